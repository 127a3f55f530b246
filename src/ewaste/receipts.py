"""Pickup receipt for a completed order, rendered as a one-page PDF."""
from __future__ import annotations

from io import BytesIO
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from .pricing import round_currency

BRAND = colors.HexColor("#22c55e")
HEADING = colors.HexColor("#1f2937")
MUTED = colors.HexColor("#6b7280")

LEFT = 50
RIGHT = 300
CO2_KG_PER_ITEM = 0.4
ENERGY_KWH_PER_ITEM = 1.4


def receipt_filename(order: dict) -> str:
    return f"receipt-{order['order_number']}.pdf"


def environmental_impact(order: dict) -> dict:
    items = sum(int(i.get("quantity", 0)) for i in order["items"])
    return {
        "items_recycled": items,
        "co2_saved_kg": round_currency(items * CO2_KG_PER_ITEM),
        "energy_saved_kwh": round_currency(items * ENERGY_KWH_PER_ITEM),
    }


def _money(value) -> str:
    return f"Rs. {float(value or 0):,.2f}"


def _item_label(item: dict) -> str:
    parts = [p for p in (item.get("brand"), item.get("model")) if p]
    parts.append(f"({item.get('category_name', '')})")
    return " ".join(parts)[:25]


class _Page:
    """Top-down text cursor over a reportlab canvas."""

    def __init__(self, pdf: canvas.Canvas) -> None:
        self.pdf = pdf
        self.top = A4[1]
        self.y = 50

    def text(self, x: float, value: str, *, size: int = 12, color=colors.black) -> None:
        self.pdf.setFont("Helvetica", size)
        self.pdf.setFillColor(color)
        self.pdf.drawString(x, self.top - self.y, value)

    def row(self, label: str, value: str, step: int = 20) -> None:
        self.text(LEFT, label)
        self.text(RIGHT, value)
        self.y += step

    def rule(self, x1: float, x2: float) -> None:
        self.pdf.line(x1, self.top - self.y, x2, self.top - self.y)


def render_receipt(order: dict, customer: dict, agent: Optional[dict] = None) -> bytes:
    buf = BytesIO()
    pdf = canvas.Canvas(buf, pagesize=A4)
    pdf.setTitle(f"Pickup receipt {order['order_number']}")
    page = _Page(pdf)

    page.text(LEFT, "E-Waste Management Platform", size=20, color=BRAND)
    page.y += 25
    page.text(LEFT, "Sustainable E-Waste Recycling")
    page.y += 15
    page.text(LEFT, "Phone: +91-98765-43210 | Email: contact@ewaste.org")
    page.y += 20
    page.rule(LEFT, 550)
    page.y += 20

    page.text(LEFT, "PICKUP RECEIPT", size=16, color=HEADING)
    page.y += 30
    page.row("Order Number:", order["order_number"])
    page.row("Order Date:", str(order["created_at"])[:10])
    page.row("Completion Date:", str(order["updated_at"])[:10])
    page.row("Status:", order["status"].upper(), step=40)

    page.text(LEFT, "Customer Details:", size=14, color=HEADING)
    page.y += 25
    page.row("Name:", f"{customer.get('first_name', '')} {customer.get('last_name', '')}".strip())
    page.row("Email:", customer.get("email") or "N/A")
    page.row("Phone:", customer.get("phone") or "N/A", step=40)

    address = order["pickup_details"]["address"]
    page.text(LEFT, "Pickup Details:", size=14, color=HEADING)
    page.y += 25
    page.row("Address:", f"{address['street']}, {address['city']}", step=15)
    page.row("", f"{address['state']} - {address['pincode']}", step=25)
    if agent:
        page.row("Pickup Executive:", f"{agent.get('first_name', '')} {agent.get('last_name', '')}".strip())
    page.y += 30

    page.text(LEFT, "Items Collected:", size=14, color=HEADING)
    page.y += 30
    for x, header in ((LEFT, "Item"), (LEFT + 150, "Condition"), (LEFT + 220, "Qty"), (LEFT + 280, "Amount")):
        page.text(x, header, size=10, color=MUTED)
    page.y += 15
    page.rule(LEFT, LEFT + 330)
    page.y += 15
    for item in order["items"]:
        page.text(LEFT, _item_label(item), size=10)
        page.text(LEFT + 150, item["condition"], size=10)
        page.text(LEFT + 220, str(item["quantity"]), size=10)
        page.text(LEFT + 280, _money(item.get("final_price") or item["estimated_price"]), size=10)
        page.y += 18

    page.y += 10
    page.rule(LEFT, LEFT + 330)
    page.y += 20
    pricing = order["pricing"]
    page.text(LEFT + 180, "Estimated Total:")
    page.text(LEFT + 280, _money(pricing["estimated_total"]))
    page.y += 20
    if pricing.get("pickup_charges"):
        page.text(LEFT + 180, "Pickup Charges:")
        page.text(LEFT + 280, _money(pricing["pickup_charges"]))
        page.y += 20
    page.text(LEFT + 180, "Final Amount:", size=14, color=BRAND)
    page.text(LEFT + 280, _money(pricing.get("actual_total") or pricing["final_amount"]), size=14, color=BRAND)
    page.y += 50

    page.text(LEFT, "Thank you for contributing to environmental sustainability!", size=10, color=MUTED)
    page.y += 15
    page.text(LEFT, "This is a computer-generated receipt and does not require a signature.", size=10, color=MUTED)
    page.y += 30

    impact = environmental_impact(order)
    page.text(LEFT, "Environmental Impact:", color=BRAND)
    page.y += 20
    page.text(LEFT, f"- Items recycled: {impact['items_recycled']}", size=10)
    page.y += 15
    page.text(LEFT, f"- Estimated CO2 emissions prevented: {impact['co2_saved_kg']} kg", size=10)
    page.y += 15
    page.text(LEFT, f"- Estimated energy saved: {impact['energy_saved_kwh']} kWh", size=10)

    pdf.showPage()
    pdf.save()
    return buf.getvalue()
