# pricing_config.py

ITEM_TYPE_PANEL_LETTERS_V1 = "panel_letters_v1"

# Catalog sheet sizes, "W x H" in metres
PANEL_SIZES = ("2.4 x 1.2", "3 x 1.5")

LETTER_TYPES = ("Fabricated", "Komacel", "Acrylic")
OPAL_TYPES = ("Opal (5mm)", "Opal (10mm)")
TRANSFORMER_TYPES = ("20W", "60W", "100W", "150W")

LABOUR_TASKS = ("router", "fabrication", "assembly", "vinyl", "print")

MIN_LETTER_SETS = 1
MAX_LETTER_SETS = 3

LETTER_HEIGHT_MIN_MM = 50
LETTER_HEIGHT_MAX_MM = 1000

MARKUP_MIN_PERCENT = 0
MARKUP_MAX_PERCENT = 100

OVERRIDE_REASON_CODES = (
    "customer_discount",
    "rework",
    "material_variance",
    "labour_variance",
    "goodwill",
    "other",
)

# Only these inputs may be overridden
OVERRIDABLE_FIELDS = ("markup_percent",) + tuple(f"labour_hours.{t}" for t in LABOUR_TASKS)

# Non-fatal advisories
TRANSFORMER_WARN_THRESHOLD = 10
LED_DENSITY_WARN_PER_M2 = 400

PRICING_SET_STATUSES = ("draft", "active", "archived")
QUOTE_STATUSES = ("draft", "sent", "accepted", "rejected", "expired")

QUOTE_VALID_DAYS = 30
