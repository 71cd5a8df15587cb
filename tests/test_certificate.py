import datetime

import fitz

from certificate import certificate_id_for, render_certificate


def test_certificate_id_format():
    reviewed = datetime.datetime(2025, 3, 9, 12, 0)
    assert certificate_id_for(42, reviewed) == "SI-2025-00042"


def test_rendered_certificate_contents():
    pdf = render_certificate(
        "Jane Roe",
        "Platform Engineer",
        "Tech Solutions LLC",
        91.4,
        datetime.date(2025, 3, 9),
        "SI-2025-00042",
        "http://localhost:3000/certificates/SI-2025-00042",
    )
    assert pdf.startswith(b"%PDF")
    with fitz.open(stream=pdf, filetype="pdf") as doc:
        assert doc.page_count == 1
        page = doc[0]
        assert page.rect.width > page.rect.height
        text = page.get_text()
        assert doc.metadata["title"] == "Certificate SI-2025-00042"
    for expected in ("Certificate of Completion", "Jane Roe", "Platform Engineer", "at Tech Solutions LLC",
                     "Final score: 91 / 100", "March 09, 2025", "SI-2025-00042"):
        assert expected in text


def test_certificate_without_score_or_organization():
    pdf = render_certificate("Jane Roe", "Engineer", "", None, datetime.date(2025, 1, 1), "SI-2025-00001", "x")
    with fitz.open(stream=pdf, filetype="pdf") as doc:
        text = doc[0].get_text()
    assert "Final score" not in text
    assert not any(line.strip().startswith("at ") for line in text.splitlines())
