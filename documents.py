"""
One-page PDF exports for quotations and bookings (rental agreements).
"""

import io
from decimal import Decimal
from typing import Any, Dict, List, Optional

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

ITEM_X = 50
QTY_X = 300
RATE_X = 370
SUBTOTAL_X = 450
LINE_END_X = 550


def format_money(amount: Any, currency: str = "LKR") -> str:
    return f"{currency} {Decimal(str(amount)):,.2f}"


def _header(pdf: canvas.Canvas, settings: Dict[str, Any], title: str, top: float) -> float:
    y = top
    company = settings.get("company_name")
    if company:
        pdf.setFont("Helvetica-Bold", 14)
        pdf.drawString(ITEM_X, y, company)
        y -= 16
        pdf.setFont("Helvetica", 9)
        for line in (settings.get("company_address"), settings.get("company_phone"), settings.get("company_email")):
            if line:
                pdf.drawString(ITEM_X, y, line)
                y -= 12
        y -= 10
    pdf.setFont("Helvetica-Bold", 20)
    pdf.drawCentredString(A4[0] / 2, y, title)
    return y - 30


def _details(pdf: canvas.Canvas, y: float, rows: List[str]) -> float:
    pdf.setFont("Helvetica", 12)
    for row in rows:
        pdf.drawString(ITEM_X, y, row)
        y -= 16
    return y - 10


def _items_table(pdf: canvas.Canvas, y: float, items: List[Dict[str, Any]], currency: str, priced: bool) -> float:
    pdf.setFont("Helvetica-Bold", 14)
    pdf.drawString(ITEM_X, y, "Items")
    y -= 20
    pdf.setFont("Helvetica", 10)
    pdf.drawString(ITEM_X, y, "Item")
    pdf.drawString(QTY_X, y, "Quantity")
    if priced:
        pdf.drawString(RATE_X, y, "Rate")
        pdf.drawString(SUBTOTAL_X, y, "Subtotal")
    pdf.line(ITEM_X, y - 5, LINE_END_X, y - 5)
    y -= 20
    for item in items:
        pdf.drawString(ITEM_X, y, str(item["name"]))
        pdf.drawString(QTY_X, y, str(item["quantity"]))
        if priced:
            pdf.drawString(RATE_X, y, format_money(item["rate"], currency))
            pdf.drawString(SUBTOTAL_X, y, format_money(item["subtotal"], currency))
        y -= 20
    return y


def _period(record: Dict[str, Any]) -> Optional[str]:
    if record.get("start_date") and record.get("end_date"):
        return f"Rental period: {record['start_date']} to {record['end_date']}"
    return None


def render_quotation_pdf(quotation: Dict[str, Any], settings: Dict[str, Any]) -> bytes:
    currency = settings.get("default_currency") or "LKR"
    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=A4)
    pdf.setTitle(quotation["quotation_id"])

    y = _header(pdf, settings, "Quotation", A4[1] - 60)
    rows = [
        f"Quotation ID: {quotation['quotation_id']}",
        f"Customer: {quotation['customer_name']}",
        f"Status: {quotation['status']}",
    ]
    period = _period(quotation)
    if period:
        rows.append(period)
    if quotation.get("created_at"):
        rows.append(f"Date: {quotation['created_at']:%Y-%m-%d}")
    validity = settings.get("quotation_validity_days")
    if validity:
        rows.append(f"Valid for {validity} days")
    y = _details(pdf, y, rows)
    y = _items_table(pdf, y, quotation["items"], currency, priced=True)

    pdf.setFont("Helvetica-Bold", 12)
    pdf.drawString(350, y - 20, f"Total: {format_money(quotation['total_amount'], currency)}")
    pdf.showPage()
    pdf.save()
    return buf.getvalue()


def render_booking_pdf(booking: Dict[str, Any], settings: Dict[str, Any]) -> bytes:
    currency = settings.get("default_currency") or "LKR"
    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=A4)
    pdf.setTitle(booking["booking_id"])

    y = _header(pdf, settings, "Rental Agreement", A4[1] - 60)
    rows = [
        f"Booking ID: {booking['booking_id']}",
        f"Customer: {booking['customer_name']}",
        f"Status: {booking['status']}",
    ]
    if booking.get("quotation_id"):
        rows.append(f"Quotation: {booking['quotation_id']}")
    period = _period(booking)
    if period:
        rows.append(period)
    y = _details(pdf, y, rows)
    y = _items_table(pdf, y, booking["items"], currency, priced=False)

    pdf.setFont("Helvetica-Bold", 12)
    pdf.drawString(350, y - 20, f"Total: {format_money(booking['total_amount'], currency)}")
    pdf.drawString(350, y - 38, f"Deposit: {format_money(booking['security_deposit'], currency)}")

    pdf.setFont("Helvetica", 9)
    pdf.drawString(ITEM_X, 120, "The customer accepts responsibility for the equipment until it is returned.")
    pdf.line(ITEM_X, 80, 250, 80)
    pdf.drawString(ITEM_X, 68, "Customer signature")
    pdf.line(350, 80, LINE_END_X, 80)
    pdf.drawString(350, 68, "Authorised signature")
    pdf.showPage()
    pdf.save()
    return buf.getvalue()
