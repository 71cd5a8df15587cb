import re

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_CNIC_RE = re.compile(r"^\d{5}-\d{7}-\d$")
_HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_BULK_SPLIT_RE = re.compile(r"[,\s;]+")
_CSV_SPLIT_RE = re.compile(r"[\n,;]")
_NON_DIGIT_RE = re.compile(r"\D")


def format_cnic(value: str) -> str:
    """Format a national identity number as ``ddddd-ddddddd-d`` while it is typed."""
    digits = _NON_DIGIT_RE.sub("", value or "")[:13]
    if len(digits) <= 5:
        return digits
    if len(digits) <= 12:
        return f"{digits[:5]}-{digits[5:]}"
    return f"{digits[:5]}-{digits[5:12]}-{digits[12:]}"


def validate_cnic(value: str) -> bool:
    return bool(_CNIC_RE.match(value or ""))


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value or ""))


def is_hex_color(value: str) -> bool:
    return bool(_HEX_COLOR_RE.match(value or ""))


def split_bulk_emails(text: str) -> list[str]:
    return [item.strip() for item in _BULK_SPLIT_RE.split(text or "") if item.strip()]


def split_csv_emails(text: str) -> list[str]:
    out: list[str] = []
    for cell in _CSV_SPLIT_RE.split(text or ""):
        value = cell.strip().strip('"').strip("'").strip()
        if not value or value.lower() == "email":
            continue
        out.append(value)
    return out


def partition_emails(emails: list[str], existing: set[str]) -> tuple[list[str], list[str], list[str]]:
    """Split raw emails into (valid, invalid, duplicates).

    ``existing`` holds lowercased addresses that are already registered.
    Valid addresses come back lowercased and deduplicated in first-seen order.
    """
    existing_lower = {e.lower() for e in existing}
    valid: list[str] = []
    seen: set[str] = set()
    invalid: list[str] = []
    duplicates: list[str] = []
    for email in emails:
        trimmed = email.strip()
        if not trimmed:
            continue
        lowered = trimmed.lower()
        if lowered in existing_lower:
            duplicates.append(trimmed)
        elif is_valid_email(trimmed):
            if lowered not in seen:
                seen.add(lowered)
                valid.append(lowered)
        else:
            invalid.append(trimmed)
    return valid, invalid, duplicates
