# quote_pdf.py
import io
import os
from datetime import datetime, timezone
from typing import Any, Dict, List

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

import pricing_config as cfg
from money import format_gbp

COMPANY_NAME = os.environ.get("COMPANY_NAME", "Signage Quoter")

_MARGIN = 54


def describe_item(input_json: Dict[str, Any]) -> str:
    """One-line summary of a panel + letters line for the printed quote."""
    sets = input_json.get("letter_sets") or []
    parts = [
        f"Panel {input_json.get('width_mm', 0):g} x {input_json.get('height_mm', 0):g}mm",
        f"{input_json.get('panel_material')} / {input_json.get('panel_finish')}",
        f"{len(sets)} letter set{'s' if len(sets) != 1 else ''}",
    ]
    if input_json.get("aperture"):
        parts.append(f"aperture ({input_json['aperture'].get('opal_type')})")
    return " | ".join(parts)


def _letter_set_lines(input_json: Dict[str, Any]) -> List[str]:
    lines = []
    for s in input_json.get("letter_sets") or []:
        lit = ", illuminated" if s.get("illuminated") else ""
        lines.append(f"{s.get('qty')} x {s.get('type')} {s.get('height_mm')}mm, {s.get('finish')}{lit}")
    return lines


def _table_header(c: canvas.Canvas, y: float, w: float) -> float:
    c.setFont("Helvetica-Bold", 10)
    c.drawString(_MARGIN, y, "Item")
    c.drawRightString(w - _MARGIN, y, "Line Total")
    y -= 12
    c.line(_MARGIN, y, w - _MARGIN, y)
    y -= 12
    c.setFont("Helvetica", 10)
    return y


def render_quote_pdf(view: Dict[str, Any]) -> bytes:
    """
    Render a stored quote as a PDF.

    ``view`` is the dict returned by ``quote_store.get_quote_with_items``.
    Figures come from the stored line totals; nothing is re-priced here.
    """
    quote = view["quote"]
    items = view["items"]

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"Quote {quote['quote_number']}")
    w, h = A4

    # Header
    y = h - _MARGIN
    c.setFont("Helvetica-Bold", 16)
    c.drawString(_MARGIN, y, f"{COMPANY_NAME} Quote {quote['quote_number']}")
    y -= 18

    c.setFont("Helvetica", 10)
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    c.drawString(_MARGIN, y, f"Generated: {now}")
    y -= 14
    if quote.get("customer_name"):
        c.drawString(_MARGIN, y, f"Customer: {quote['customer_name']}")
        y -= 14
    if quote.get("customer_email"):
        c.drawString(_MARGIN, y, f"Email: {quote['customer_email']}")
        y -= 14
    c.drawString(_MARGIN, y, "Prices shown exclude VAT.")
    y -= 18

    y = _table_header(c, y, w)

    for i, item in enumerate(items, start=1):
        details = _letter_set_lines(item["input_json"])
        # page break if needed
        if y < 90 + 12 * len(details):
            c.showPage()
            y = _table_header(c, h - _MARGIN, w)

        c.drawString(_MARGIN, y, f"{i}. {describe_item(item['input_json'])[:85]}")
        c.drawRightString(w - _MARGIN, y, format_gbp(item["line_total_pence"]))
        y -= 14

        c.setFont("Helvetica-Oblique", 9)
        for line in details:
            c.drawString(_MARGIN + 16, y, line[:100])
            y -= 12
        c.setFont("Helvetica", 10)

    y -= 8
    c.line(_MARGIN, y, w - _MARGIN, y)
    y -= 16

    c.setFont("Helvetica-Bold", 11)
    c.drawRightString(w - 160, y, "Total:")
    c.drawRightString(w - _MARGIN, y, format_gbp(view["total_pence"]))
    y -= 18

    c.setFont("Helvetica", 9)
    c.drawString(_MARGIN, y, f"Quote valid for {cfg.QUOTE_VALID_DAYS} days unless otherwise agreed.")

    c.save()
    buf.seek(0)
    return buf.read()
