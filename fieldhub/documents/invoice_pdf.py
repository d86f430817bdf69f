"""
Render an invoice (see services/invoicing.build_invoice) as a one-table A4 PDF.
"""
import io
from decimal import Decimal
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..config import settings


def _money(value: Optional[Decimal], symbol: str) -> str:
    if value is None:
        return "—"
    return f"{symbol}{Decimal(value):,.2f}"


def _quantity(value: Optional[Decimal]) -> str:
    if value is None:
        return "—"
    return f"{Decimal(value).normalize():f}"


def render_invoice_pdf(invoice: dict, company_name: Optional[str] = None) -> bytes:
    symbol = settings.invoice_currency_symbol
    styles = getSampleStyleSheet()
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=35,
        rightMargin=35,
        topMargin=40,
        bottomMargin=40,
        title="Invoice",
    )

    story = [Paragraph("Invoice", styles["Title"])]
    if company_name:
        story.append(Paragraph(escape(company_name), styles["Heading2"]))
    generated_at = invoice.get("generated_at")
    if generated_at:
        story.append(Paragraph(f"Generated {generated_at:%d %b %Y %H:%M} UTC", styles["Normal"]))
    story.append(Paragraph(f"{invoice['job_count']} job(s)", styles["Normal"]))
    story.append(Spacer(1, 14))

    table_data = [["Job", "Worker", "Location", "Work type", "Qty", "Unit price", "Total"]]
    for row in invoice["rows"]:
        table_data.append([
            row["job_id"],
            row["worker_name"] or "—",
            Paragraph(escape(row["location"]), styles["BodyText"]),
            Paragraph(escape(row["work_type"] or "—"), styles["BodyText"]),
            _quantity(row["quantity"]),
            _money(row["unit_price"], symbol),
            _money(row["total"], symbol),
        ])
    table_data.append(["", "", "", "", "", "Total", _money(invoice["grand_total"], symbol)])

    table = Table(table_data, colWidths=[45, 80, 130, 100, 40, 60, 70], repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f0f0f0")),
        ("TEXTCOLOR", (0, 0), (-1, -1), colors.black),
        ("ALIGN", (4, 0), (-1, -1), "RIGHT"),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("BOTTOMPADDING", (0, 0), (-1, 0), 8),
        ("TOPPADDING", (0, 0), (-1, 0), 8),
        ("GRID", (0, 0), (-1, -2), 0.5, colors.grey),
        ("LINEABOVE", (0, -1), (-1, -1), 1, colors.black),
    ]))
    story.append(table)

    doc.build(story)
    return buf.getvalue()
