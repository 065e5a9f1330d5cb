from __future__ import annotations

from datetime import datetime
from io import BytesIO
from typing import Any, Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas


def build_invoice_pdf_bytes(
    *,
    invoice_number: str,
    manuscript_title: str,
    author_name: str,
    amount: float,
    currency: str,
    status: str,
    paid_at: Optional[Any] = None,
    issued_on: Optional[datetime] = None,
) -> bytes:
    """
    使用 ReportLab 生成 APC 账单 PDF，输出 bytes 便于直接作为下载响应返回。
    """
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4
    left = 0.9 * inch
    y = height - 0.9 * inch

    c.setFont("Helvetica-Bold", 18)
    c.drawString(left, y, "Manuscripta Invoice")
    y -= 0.35 * inch

    c.setFont("Helvetica", 10)
    c.drawString(left, y, f"Invoice No: {invoice_number}")
    y -= 0.18 * inch
    c.drawString(left, y, f"Date: {(issued_on or datetime.now()).strftime('%Y-%m-%d')}")
    y -= 0.18 * inch
    c.drawString(left, y, f"Billed to: {author_name or 'Author'}")
    y -= 0.35 * inch

    c.setLineWidth(1)
    c.line(left, y, width - left, y)
    y -= 0.35 * inch

    c.setFont("Helvetica-Bold", 12)
    c.drawString(left, y, "Article Processing Charge")
    y -= 0.22 * inch
    c.setFont("Helvetica", 10)
    title = (manuscript_title or "").strip() or "Manuscript"
    c.drawString(left, y, f"Manuscript: {title[:90]}")
    y -= 0.18 * inch
    c.drawString(left, y, f"Amount: {currency} {amount:,.2f}")
    y -= 0.18 * inch
    c.drawString(left, y, f"Status: {status.upper()}")
    if paid_at:
        y -= 0.18 * inch
        c.drawString(left, y, f"Paid at: {paid_at}")

    c.setFont("Helvetica", 8)
    c.setFillColorRGB(0.45, 0.45, 0.45)
    c.drawString(left, 0.9 * inch, "This is a system-generated document.")

    c.showPage()
    c.save()
    buf.seek(0)
    return buf.read()
