# tuning_knobs.py
"""
TUNING KNOBS (EDIT THIS FILE)

Seed rate card used when a fresh database has no pricing set yet.
All money is integer pence. Once seeded, prices are edited through a draft
pricing set and activated; changing this file does not touch existing sets.
"""

DEFAULT_PRICING_SET_NAME = "Default rate card"

# ============================================================
# 1) PANEL SHEETS (pence per sheet, by material + sheet size)
# ============================================================
PANEL_PRICES = {
    "Aluminium 2.5mm": {"2.4 x 1.2": 8500, "3 x 1.5": 12500},
    "Aluminium 3mm": {"2.4 x 1.2": 9500, "3 x 1.5": 14000},
    "ACM 3mm": {"2.4 x 1.2": 6500, "3 x 1.5": 9800},
    "Foamex 10mm": {"2.4 x 1.2": 4200},
}

# ============================================================
# 2) MATERIAL AVAILABILITY TOGGLES
# ============================================================
MATERIAL_ENABLED = {
    "Aluminium 2.5mm": True,
    "Aluminium 3mm": True,
    "ACM 3mm": True,
    "Foamex 10mm": False,  # supplier discontinued 10mm
}

PANEL_PRICES = {m: sizes for m, sizes in PANEL_PRICES.items() if MATERIAL_ENABLED.get(m, False)}

# ============================================================
# 3) PANEL FINISHES (pence per m2)
# ============================================================
PANEL_FINISHES = {
    "Powder Coating": 2500,
    "Wet Spray": 3500,
    "Vinyl Wrap": 1800,
}

# ============================================================
# 4) LETTERS
# ============================================================
# Base cost per letter (pence) by type and height bracket (mm).
# A requested height is priced at the next bracket up.
LETTER_PRICES = {
    "Fabricated": {
        50: 1500, 100: 2200, 150: 3000, 200: 4000, 250: 5200,
        300: 6500, 400: 8500, 500: 11000, 600: 13500, 800: 18000, 1000: 23000,
    },
    "Komacel": {
        50: 800, 100: 1200, 150: 1600, 200: 2200, 250: 2800,
        300: 3500, 400: 4600, 500: 5800, 600: 7000,
    },
    "Acrylic": {
        50: 600, 100: 900, 150: 1300, 200: 1800, 250: 2400,
        300: 3000, 400: 3900, 500: 4800, 600: 5800,
    },
}

LETTER_FINISH_RULES = {
    "Fabricated": ["Powder Coating", "Wet Spray", "Brushed", "Polished"],
    "Komacel": ["Painted", "Vinyl Faced"],
    "Acrylic": ["Clear", "Opal", "Coloured"],
}

# ============================================================
# 5) ILLUMINATION
# ============================================================
LED_UNIT_COST_PENCE = 50
LED_DRAW_WATTS = 1.0

# LEDs per metre of letter height, by height bracket (mm)
LEDS_PER_METRE_BY_HEIGHT = {
    50: 40, 100: 30, 150: 27, 200: 25, 250: 24, 300: 27, 350: 29,
    400: 30, 450: 31, 500: 32, 600: 34, 700: 35, 800: 35, 900: 36, 1000: 36,
}

# Aperture backlighting: LED strips run across the width, one row per spacing
APERTURE_LEDS_PER_METRE = 5
APERTURE_STRIP_SPACING_MM = 200

TRANSFORMERS = {
    "20W": {"unit_cost_pence": 1500, "rated_watts": 20},
    "60W": {"unit_cost_pence": 2500, "rated_watts": 60},
    "100W": {"unit_cost_pence": 3500, "rated_watts": 100},
    "150W": {"unit_cost_pence": 4500, "rated_watts": 150},
}

OPAL_PRICES = {
    "Opal (5mm)": {"2.4 x 1.2": 6500},
    "Opal (10mm)": {"2.4 x 1.2": 9500},
}

# ============================================================
# 6) LABOUR (pence per hour)
# ============================================================
MANUFACTURING_RATES = {
    "router": 4500,
    "fabrication": 5000,
    "assembly": 4000,
    "vinyl": 3500,
    "print": 6000,
}


def default_rate_card_data() -> dict:
    """Seed rate card in the JSON shape stored on a pricing set."""
    return {
        "panel_prices": [
            {"material": m, "sheet_size": size, "unit_cost_pence": p}
            for m, sizes in PANEL_PRICES.items()
            for size, p in sizes.items()
        ],
        "panel_finishes": dict(PANEL_FINISHES),
        "letter_prices": [
            {"letter_type": t, "height_mm": h, "unit_price_pence": p}
            for t, heights in LETTER_PRICES.items()
            for h, p in heights.items()
        ],
        "letter_finish_rules": {t: list(f) for t, f in LETTER_FINISH_RULES.items()},
        "led_unit_cost_pence": LED_UNIT_COST_PENCE,
        "led_draw_watts": LED_DRAW_WATTS,
        "leds_per_metre_by_height": [
            {"height_mm": h, "leds_per_metre": n} for h, n in LEDS_PER_METRE_BY_HEIGHT.items()
        ],
        "aperture_leds_per_metre": APERTURE_LEDS_PER_METRE,
        "aperture_strip_spacing_mm": APERTURE_STRIP_SPACING_MM,
        "transformers": {t: dict(spec) for t, spec in TRANSFORMERS.items()},
        "opal_prices": [
            {"opal_type": o, "sheet_size": size, "unit_cost_pence": p}
            for o, sizes in OPAL_PRICES.items()
            for size, p in sizes.items()
        ],
        "manufacturing_rates": dict(MANUFACTURING_RATES),
    }
