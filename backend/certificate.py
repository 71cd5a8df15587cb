import datetime
from typing import Optional

import fitz  # PyMuPDF

PAGE_WIDTH, PAGE_HEIGHT = 842, 595  # A4 landscape, points
ACCENT = (0.15, 0.39, 0.92)
MUTED = (0.35, 0.38, 0.45)
INK = (0.07, 0.09, 0.15)


def certificate_id_for(interview_id: int, reviewed_at: datetime.datetime) -> str:
    return f"SI-{reviewed_at.year}-{interview_id:05d}"


def _centered(page, top: float, height: float, text: str, fontsize: float, color=INK, fontname: str = "helv"):
    rect = fitz.Rect(60, top, PAGE_WIDTH - 60, top + height)
    page.insert_textbox(rect, text, fontsize=fontsize, fontname=fontname, color=color, align=fitz.TEXT_ALIGN_CENTER)


def render_certificate(
    candidate_name: str,
    job_title: str,
    organization: str,
    score: Optional[float],
    issued_on: datetime.date,
    certificate_id: str,
    verify_url: str,
) -> bytes:
    """Render a one-page completion certificate and return the PDF bytes."""
    doc = fitz.open()
    try:
        page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        page.draw_rect(fitz.Rect(20, 20, PAGE_WIDTH - 20, PAGE_HEIGHT - 20), color=ACCENT, width=3)
        page.draw_rect(fitz.Rect(30, 30, PAGE_WIDTH - 30, PAGE_HEIGHT - 30), color=MUTED, width=0.75)

        _centered(page, 70, 50, "Certificate of Completion", 34, color=ACCENT, fontname="hebo")
        _centered(page, 140, 30, "This certifies that", 14, color=MUTED)
        _centered(page, 175, 50, candidate_name, 30, fontname="hebo")
        _centered(page, 240, 30, "has successfully completed the interview for", 14, color=MUTED)
        _centered(page, 275, 40, job_title, 22, fontname="hebo")
        if organization:
            _centered(page, 320, 30, f"at {organization}", 14, color=MUTED)
        if score is not None:
            _centered(page, 355, 30, f"Final score: {round(score)} / 100", 14)

        _centered(page, 430, 24, f"Issued on {issued_on.strftime('%B %d, %Y')}", 12, color=MUTED)
        _centered(page, 455, 24, f"Certificate ID: {certificate_id}", 12, color=MUTED)
        _centered(page, 480, 24, f"Verify at {verify_url}", 10, color=ACCENT)

        doc.set_metadata({"title": f"Certificate {certificate_id}", "author": "SmartInterview"})
        return doc.tobytes()
    finally:
        doc.close()
