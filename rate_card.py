# rate_card.py
"""
Versioned rate card for the panel + letters quoter.

A pricing set stores its rate card as one JSON document. ``RateCard.from_dict``
turns that document into read-only lookup tables; the pricing engine only ever
reads from them, so one pricing-set id always prices the same way.
"""
import bisect
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

import pricing_config as cfg

logger = logging.getLogger(__name__)

_SHEET_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*x\s*(\d+(?:\.\d+)?)$")


class RateCardError(Exception):
    """Rate card missing, malformed or incomplete."""

    def __init__(self, message: str, missing_keys: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_keys = list(missing_keys or [])


def parse_sheet_size(sheet_size: str) -> Optional[Tuple[Decimal, Decimal]]:
    """
    Parse a catalog sheet size into (width_mm, height_mm).

    "2.4 x 1.2" -> (Decimal("2400.0"), Decimal("1200.0")). Returns None when the
    string is not in "W x H" metres form.
    """
    m = _SHEET_SIZE_RE.match((sheet_size or "").strip())
    if not m:
        return None
    return Decimal(m.group(1)) * 1000, Decimal(m.group(2)) * 1000


def _num(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    return value if isinstance(value, int) else float(value)


def _bracket(heights: Tuple[int, ...], height_mm: float) -> Optional[int]:
    # smallest listed height >= requested height
    i = bisect.bisect_left(heights, height_mm)
    if i >= len(heights):
        return None
    return heights[i]


@dataclass(frozen=True)
class TransformerSpec:
    unit_cost_pence: int
    rated_watts: float


@dataclass(frozen=True)
class CompletenessResult:
    ok: bool
    missing: List[str]
    warnings: List[str]


@dataclass(frozen=True)
class RateCard:
    pricing_set_id: str
    pricing_set_name: str

    panel_price_by_material_and_size: Mapping[Tuple[str, str], int]
    finish_cost_per_m2_by_finish: Mapping[str, int]
    letter_base_cost_by_type_and_height: Mapping[Tuple[str, int], int]
    finish_rules_by_type: Mapping[str, FrozenSet[str]]
    led_cost_per_unit: int
    leds_per_metre_by_height: Mapping[int, float]
    transformer_specs: Mapping[str, TransformerSpec]
    manufacturing_rate_by_task: Mapping[str, int]
    opal_price_by_type_and_size: Mapping[Tuple[str, str], int]
    led_draw_watts: float = 1.0
    aperture_leds_per_metre: float = 5
    aperture_strip_spacing_mm: float = 200

    _letter_heights: Mapping[str, Tuple[int, ...]] = field(default_factory=lambda: MappingProxyType({}), init=False, repr=False, compare=False)
    _led_heights: Tuple[int, ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        heights: Dict[str, List[int]] = {}
        for (letter_type, h) in self.letter_base_cost_by_type_and_height:
            heights.setdefault(letter_type, []).append(h)
        object.__setattr__(
            self, "_letter_heights", MappingProxyType({t: tuple(sorted(hs)) for t, hs in heights.items()})
        )
        object.__setattr__(self, "_led_heights", tuple(sorted(self.leds_per_metre_by_height)))

    # ----------------------------
    # Lookups
    # ----------------------------
    def panel_unit_price(self, material: str, sheet_size: str) -> Optional[int]:
        return self.panel_price_by_material_and_size.get((material, sheet_size))

    def finish_cost_per_m2(self, finish: str) -> Optional[int]:
        return self.finish_cost_per_m2_by_finish.get(finish)

    def allowed_finishes(self, letter_type: str) -> Optional[FrozenSet[str]]:
        return self.finish_rules_by_type.get(letter_type)

    def letter_height_bracket(self, letter_type: str, height_mm: float) -> Optional[int]:
        return _bracket(self._letter_heights.get(letter_type, ()), height_mm)

    def letter_base_cost(self, letter_type: str, height_mm: float) -> Optional[int]:
        bracket = self.letter_height_bracket(letter_type, height_mm)
        if bracket is None:
            return None
        return self.letter_base_cost_by_type_and_height[(letter_type, bracket)]

    def leds_per_metre(self, height_mm: float) -> Optional[float]:
        bracket = _bracket(self._led_heights, height_mm)
        if bracket is None:
            return None
        return self.leds_per_metre_by_height[bracket]

    def transformer(self, transformer_type: str) -> Optional[TransformerSpec]:
        return self.transformer_specs.get(transformer_type)

    def labour_rate(self, task: str) -> Optional[int]:
        return self.manufacturing_rate_by_task.get(task)

    def opal_sheet(self, opal_type: str) -> Optional[Tuple[str, int]]:
        """First priced sheet (by size string) for an opal type, as (sheet_size, pence)."""
        sizes = sorted(size for (o, size) in self.opal_price_by_type_and_size if o == opal_type)
        if not sizes:
            return None
        return sizes[0], self.opal_price_by_type_and_size[(opal_type, sizes[0])]

    # ----------------------------
    # Serialisation
    # ----------------------------
    @classmethod
    def from_dict(cls, pricing_set_id: str, pricing_set_name: str, data: Dict[str, Any]) -> "RateCard":
        try:
            panel_prices = {
                (str(p["material"]), str(p["sheet_size"])): int(p["unit_cost_pence"])
                for p in data.get("panel_prices", [])
            }
            finishes = {str(k): int(v) for k, v in (data.get("panel_finishes") or {}).items()}
            letter_prices = {
                (str(p["letter_type"]), int(p["height_mm"])): int(p["unit_price_pence"])
                for p in data.get("letter_prices", [])
            }
            finish_rules = {
                str(t): frozenset(str(f) for f in allowed)
                for t, allowed in (data.get("letter_finish_rules") or {}).items()
            }
            leds_per_metre = {
                int(p["height_mm"]): _num(p["leds_per_metre"]) for p in data.get("leds_per_metre_by_height", [])
            }
            transformers = {
                str(t): TransformerSpec(int(s["unit_cost_pence"]), float(s["rated_watts"]))
                for t, s in (data.get("transformers") or {}).items()
            }
            rates = {str(k): int(v) for k, v in (data.get("manufacturing_rates") or {}).items()}
            opal_prices = {
                (str(p["opal_type"]), str(p["sheet_size"])): int(p["unit_cost_pence"])
                for p in data.get("opal_prices", [])
            }
            led_cost = int(data.get("led_unit_cost_pence", 0))
            led_draw_watts = float(data.get("led_draw_watts", 1.0))
            aperture_density = _num(data.get("aperture_leds_per_metre", 5))
            aperture_spacing = _num(data.get("aperture_strip_spacing_mm", 200))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise RateCardError(f"Malformed rate card for pricing set {pricing_set_id}: {e}") from e

        for spec_type, spec in transformers.items():
            if spec.rated_watts <= 0:
                raise RateCardError(f"Transformer {spec_type} must have positive rated_watts")
        if led_draw_watts <= 0 or aperture_spacing <= 0:
            raise RateCardError("led_draw_watts and aperture_strip_spacing_mm must be positive")

        return cls(
            pricing_set_id=pricing_set_id,
            pricing_set_name=pricing_set_name,
            panel_price_by_material_and_size=MappingProxyType(panel_prices),
            finish_cost_per_m2_by_finish=MappingProxyType(finishes),
            letter_base_cost_by_type_and_height=MappingProxyType(letter_prices),
            finish_rules_by_type=MappingProxyType(finish_rules),
            led_cost_per_unit=led_cost,
            leds_per_metre_by_height=MappingProxyType(leds_per_metre),
            transformer_specs=MappingProxyType(transformers),
            manufacturing_rate_by_task=MappingProxyType(rates),
            opal_price_by_type_and_size=MappingProxyType(opal_prices),
            led_draw_watts=led_draw_watts,
            aperture_leds_per_metre=aperture_density,
            aperture_strip_spacing_mm=aperture_spacing,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "panel_prices": [
                {"material": m, "sheet_size": s, "unit_cost_pence": p}
                for (m, s), p in sorted(self.panel_price_by_material_and_size.items())
            ],
            "panel_finishes": dict(sorted(self.finish_cost_per_m2_by_finish.items())),
            "letter_prices": [
                {"letter_type": t, "height_mm": h, "unit_price_pence": p}
                for (t, h), p in sorted(self.letter_base_cost_by_type_and_height.items())
            ],
            "letter_finish_rules": {t: sorted(f) for t, f in sorted(self.finish_rules_by_type.items())},
            "led_unit_cost_pence": self.led_cost_per_unit,
            "led_draw_watts": self.led_draw_watts,
            "leds_per_metre_by_height": [
                {"height_mm": h, "leds_per_metre": n} for h, n in sorted(self.leds_per_metre_by_height.items())
            ],
            "aperture_leds_per_metre": self.aperture_leds_per_metre,
            "aperture_strip_spacing_mm": self.aperture_strip_spacing_mm,
            "transformers": {
                t: {"unit_cost_pence": s.unit_cost_pence, "rated_watts": s.rated_watts}
                for t, s in sorted(self.transformer_specs.items())
            },
            "opal_prices": [
                {"opal_type": o, "sheet_size": s, "unit_cost_pence": p}
                for (o, s), p in sorted(self.opal_price_by_type_and_size.items())
            ],
            "manufacturing_rates": dict(sorted(self.manufacturing_rate_by_task.items())),
        }


# ----------------------------
# Completeness
# ----------------------------
def check_completeness(rate_card: RateCard) -> CompletenessResult:
    """List what a rate card lacks before it can price every catalog option."""
    missing: List[str] = []
    warnings: List[str] = []

    if rate_card.led_cost_per_unit <= 0:
        missing.append("led_unit_cost_pence")

    for t in cfg.TRANSFORMER_TYPES:
        if t not in rate_card.transformer_specs:
            missing.append(f"transformers.{t}")

    for task in cfg.LABOUR_TASKS:
        if task not in rate_card.manufacturing_rate_by_task:
            missing.append(f"manufacturing_rates.{task}")

    for opal_type in cfg.OPAL_TYPES:
        if rate_card.opal_sheet(opal_type) is None:
            missing.append(f"opal_prices.{opal_type}")
        elif parse_sheet_size(rate_card.opal_sheet(opal_type)[0]) is None:
            missing.append(f"opal_prices.{opal_type} (unreadable sheet size)")

    for letter_type in cfg.LETTER_TYPES:
        if not rate_card.finish_rules_by_type.get(letter_type):
            missing.append(f"letter_finish_rules.{letter_type}")
        if not rate_card._letter_heights.get(letter_type):
            missing.append(f"letter_prices.{letter_type}")
        elif rate_card.letter_height_bracket(letter_type, cfg.LETTER_HEIGHT_MAX_MM) is None:
            warnings.append(
                f"letter_prices.{letter_type} stops at {rate_card._letter_heights[letter_type][-1]}mm"
            )

    if not rate_card.leds_per_metre_by_height:
        missing.append("leds_per_metre_by_height")
    elif rate_card.leds_per_metre(cfg.LETTER_HEIGHT_MAX_MM) is None:
        warnings.append(f"leds_per_metre_by_height stops at {rate_card._led_heights[-1]}mm")

    if not rate_card.panel_price_by_material_and_size:
        missing.append("panel_prices")
    else:
        priced_sizes = {size for (_, size) in rate_card.panel_price_by_material_and_size}
        for size in cfg.PANEL_SIZES:
            if size not in priced_sizes:
                warnings.append(f"panel_prices missing size: {size}")

    if not rate_card.finish_cost_per_m2_by_finish:
        missing.append("panel_finishes")

    return CompletenessResult(ok=not missing, missing=missing, warnings=warnings)


def assert_rate_card_complete(rate_card: RateCard) -> None:
    result = check_completeness(rate_card)
    if not result.ok:
        logger.warning("Rate card %s incomplete: %s", rate_card.pricing_set_id, result.missing)
        raise RateCardError(f"Rate card incomplete. Missing: {', '.join(result.missing)}", result.missing)
