# pricing_engine.py
import logging
from dataclasses import asdict, dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pricing_config as cfg
from money import ceil_int, dec, labour_cost_pence, markup_pence, to_pence
from overrides import apply_overrides
from quote_models import ApertureInput, LetterSetInput, PanelLettersV1Input
from rate_card import RateCard, TransformerSpec, parse_sheet_size
from validation import validate

logger = logging.getLogger(__name__)


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ValueError(msg)


@dataclass(frozen=True)
class Layout:
    panels_x: int
    panels_y: int
    panels_needed: int
    area_m2: Decimal


@dataclass(frozen=True)
class Illumination:
    aperture_leds: int
    letter_set_leds: Tuple[int, ...]
    letters_total_leds: int
    total_leds: int
    transformers_needed: int
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Derived:
    panels_x: int
    panels_y: int
    panels_needed: int
    area_m2: float
    aperture_leds: int
    letters_total_leds: int
    total_leds: int
    transformers_needed: int


@dataclass(frozen=True)
class LetterSetCost:
    type: str
    qty: int
    height_mm: int
    finish: str
    illuminated: bool
    unit_price_pence: int
    base_cost_pence: int
    leds_count: int
    led_cost_pence: int
    total_pence: int


@dataclass(frozen=True)
class Costs:
    panel_material_cost_pence: int
    panel_finish_cost_pence: int
    opal_cost_pence: int
    aperture_led_cost_pence: int
    transformer_cost_pence: int
    letters_total_cost_pence: int
    labour_cost_pence: int
    materials_markup_pence: int
    letter_sets: Tuple[LetterSetCost, ...] = field(default=(), compare=False)

    @property
    def panel_overall_cost_pence(self) -> int:
        return self.panel_material_cost_pence + self.panel_finish_cost_pence

    @property
    def aperture_total_cost_pence(self) -> int:
        return self.opal_cost_pence + self.aperture_led_cost_pence

    @property
    def materials_base_pence(self) -> int:
        # labour is not marked up
        return (
            self.panel_material_cost_pence
            + self.panel_finish_cost_pence
            + self.opal_cost_pence
            + self.aperture_led_cost_pence
            + self.transformer_cost_pence
            + self.letters_total_cost_pence
        )

    @property
    def materials_total_pence(self) -> int:
        return self.materials_base_pence + self.materials_markup_pence

    @property
    def line_total_pence(self) -> int:
        return self.materials_total_pence + self.labour_cost_pence

    def as_dict(self) -> Dict[str, int]:
        return {
            "panel_material_cost_pence": self.panel_material_cost_pence,
            "panel_finish_cost_pence": self.panel_finish_cost_pence,
            "panel_overall_cost_pence": self.panel_overall_cost_pence,
            "opal_cost_pence": self.opal_cost_pence,
            "aperture_led_cost_pence": self.aperture_led_cost_pence,
            "aperture_total_cost_pence": self.aperture_total_cost_pence,
            "transformer_cost_pence": self.transformer_cost_pence,
            "letters_total_cost_pence": self.letters_total_cost_pence,
            "labour_cost_pence": self.labour_cost_pence,
            "materials_base_pence": self.materials_base_pence,
            "materials_markup_pence": self.materials_markup_pence,
            "materials_total_pence": self.materials_total_pence,
        }


# =========================
# Dimensions & layout
# =========================
def compute_layout(width_mm: float, height_mm: float, allowance_mm: float, panel_size: str) -> Layout:
    """
    Panels needed to cover the sign, plus the sign's own area.

    Width and height must be positive (validation rejects anything else). The
    area is of the requested sign, not of the sheet stock consumed.
    """
    sheet = parse_sheet_size(panel_size)
    _require(sheet is not None, f"unreadable panel size: {panel_size!r}")
    sheet_w, sheet_h = sheet

    panels_x = ceil_int((dec(width_mm) + dec(allowance_mm)) / sheet_w)
    panels_y = ceil_int((dec(height_mm) + dec(allowance_mm)) / sheet_h)
    area_m2 = (dec(width_mm) / 1000) * (dec(height_mm) / 1000)

    return Layout(
        panels_x=panels_x,
        panels_y=panels_y,
        panels_needed=panels_x * panels_y,
        area_m2=area_m2,
    )


# =========================
# Illumination
# =========================
def letter_set_leds(letter_set: LetterSetInput, rate_card: RateCard) -> int:
    if not letter_set.illuminated:
        return 0
    per_metre = rate_card.leds_per_metre(letter_set.height_mm)
    _require(per_metre is not None, f"no LED density for {letter_set.height_mm}mm letters")
    return ceil_int(dec(letter_set.height_mm) / 1000 * dec(per_metre) * letter_set.qty)


def aperture_leds(aperture: Optional[ApertureInput], rate_card: RateCard) -> int:
    # LED strips run across the width, one row per strip spacing of height
    if aperture is None:
        return 0
    per_row = ceil_int(dec(aperture.width_mm) / 1000 * dec(rate_card.aperture_leds_per_metre))
    rows = ceil_int(dec(aperture.height_mm) / dec(rate_card.aperture_strip_spacing_mm))
    return per_row * rows


def transformers_for(total_leds: int, spec: TransformerSpec, led_draw_watts: float) -> int:
    if total_leds <= 0:
        return 0
    needed = ceil_int(dec(total_leds) * dec(led_draw_watts) / dec(spec.rated_watts))
    return max(needed, 1)


def compute_illumination(
    letter_sets: Sequence[LetterSetInput],
    aperture: Optional[ApertureInput],
    transformer_type: str,
    rate_card: RateCard,
) -> Illumination:
    per_set = tuple(letter_set_leds(s, rate_card) for s in letter_sets)
    ap_leds = aperture_leds(aperture, rate_card)
    letters_total = sum(per_set)
    total = ap_leds + letters_total

    spec = rate_card.transformer(transformer_type)
    _require(spec is not None, f"unknown transformer type: {transformer_type}")
    needed = transformers_for(total, spec, rate_card.led_draw_watts)

    warnings = []
    if needed > cfg.TRANSFORMER_WARN_THRESHOLD:
        warnings.append(
            f"High transformer count ({needed} x {transformer_type}) - check the transformer type and LED counts"
        )

    return Illumination(
        aperture_leds=ap_leds,
        letter_set_leds=per_set,
        letters_total_leds=letters_total,
        total_leds=total,
        transformers_needed=needed,
        warnings=tuple(warnings),
    )


# =========================
# Costs
# =========================
def opal_cost_pence(aperture: Optional[ApertureInput], rate_card: RateCard) -> int:
    if aperture is None:
        return 0
    sheet = rate_card.opal_sheet(aperture.opal_type)
    _require(sheet is not None, f"no opal price for {aperture.opal_type}")
    sheet_size, sheet_cost = sheet
    dims = parse_sheet_size(sheet_size)
    _require(dims is not None, f"unreadable opal sheet size: {sheet_size!r}")

    aperture_area = dec(aperture.width_mm) * dec(aperture.height_mm)
    sheet_area = dims[0] * dims[1]
    return ceil_int(aperture_area / sheet_area) * sheet_cost


def letter_set_cost(letter_set: LetterSetInput, leds: int, rate_card: RateCard) -> LetterSetCost:
    unit_price = rate_card.letter_base_cost(letter_set.type, letter_set.height_mm)
    _require(unit_price is not None, f"no letter price for {letter_set.type} at {letter_set.height_mm}mm")
    base = letter_set.qty * unit_price
    led_cost = leds * rate_card.led_cost_per_unit
    return LetterSetCost(
        type=letter_set.type,
        qty=letter_set.qty,
        height_mm=letter_set.height_mm,
        finish=letter_set.finish,
        illuminated=letter_set.illuminated,
        unit_price_pence=unit_price,
        base_cost_pence=base,
        leds_count=leds,
        led_cost_pence=led_cost,
        total_pence=base + led_cost,
    )


def aggregate(
    layout: Layout,
    illumination: Illumination,
    x: PanelLettersV1Input,
    rate_card: RateCard,
) -> Costs:
    """Priced breakdown from the submitted inputs, before any override."""
    panel_unit = rate_card.panel_unit_price(x.panel_material, x.panel_size)
    _require(panel_unit is not None, f"no panel price for {x.panel_material} @ {x.panel_size}")
    finish_rate = rate_card.finish_cost_per_m2(x.panel_finish)
    _require(finish_rate is not None, f"no finish price for {x.panel_finish}")
    transformer = rate_card.transformer(x.transformer_type)

    sets = tuple(
        letter_set_cost(s, leds, rate_card) for s, leds in zip(x.letter_sets, illumination.letter_set_leds)
    )

    costs = Costs(
        panel_material_cost_pence=layout.panels_needed * panel_unit,
        panel_finish_cost_pence=to_pence(layout.area_m2 * finish_rate),
        opal_cost_pence=opal_cost_pence(x.aperture, rate_card),
        aperture_led_cost_pence=illumination.aperture_leds * rate_card.led_cost_per_unit,
        transformer_cost_pence=illumination.transformers_needed * transformer.unit_cost_pence,
        letters_total_cost_pence=sum(s.total_pence for s in sets),
        labour_cost_pence=labour_cost_pence(x.labour_hours.model_dump(), rate_card.manufacturing_rate_by_task),
        materials_markup_pence=0,
        letter_sets=sets,
    )
    # markup needs the finished materials base
    return _with_markup(costs, x.markup_percent)


def _with_markup(costs: Costs, markup_percent: float) -> Costs:
    return replace(costs, materials_markup_pence=markup_pence(costs.materials_base_pence, markup_percent))


def _warnings_for(layout: Layout, illumination: Illumination) -> List[str]:
    warnings = list(illumination.warnings)
    if layout.area_m2 > 0 and illumination.total_leds:
        density = dec(illumination.total_leds) / layout.area_m2
        if density > cfg.LED_DENSITY_WARN_PER_M2:
            warnings.append(
                f"Unusually high LED density ({density:.0f} LEDs/m2) - check letter heights and quantities"
            )
    return warnings


# =========================
# Entry point
# =========================
def failed_output(errors: List[str], pricing_set_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ok": False,
        "item_type": cfg.ITEM_TYPE_PANEL_LETTERS_V1,
        "pricing_set_id": pricing_set_id,
        "errors": list(errors),
        "warnings": [],
    }


def calculate_panel_letters_v1(
    payload: Union[PanelLettersV1Input, Dict[str, Any]],
    rate_card: RateCard,
) -> Dict[str, Any]:
    """
    Price one panel + letters line item.

    Pure and deterministic: the same payload and rate card always give the same
    JSON-ready dict. Invalid input yields ``{"ok": False, "errors": [...]}``
    and no cost data; nothing is raised for bad input.
    """
    result = validate(payload, rate_card)
    if not result.ok:
        logger.debug("panel_letters_v1 rejected (%d errors)", len(result.errors))
        return failed_output(result.errors, rate_card.pricing_set_id)
    x = result.value

    # ---- Quantities ----
    layout = compute_layout(x.width_mm, x.height_mm, x.allowance_mm, x.panel_size)
    illumination = compute_illumination(x.letter_sets, x.aperture, x.transformer_type, rate_card)

    derived = Derived(
        panels_x=layout.panels_x,
        panels_y=layout.panels_y,
        panels_needed=layout.panels_needed,
        area_m2=float(layout.area_m2),
        aperture_leds=illumination.aperture_leds,
        letters_total_leds=illumination.letters_total_leds,
        total_leds=illumination.total_leds,
        transformers_needed=illumination.transformers_needed,
    )

    # ---- Costs, then overrides on their inputs ----
    base_costs = aggregate(layout, illumination, x, rate_card)
    outcome = apply_overrides(base_costs, derived, x, rate_card)
    costs = outcome.costs

    output: Dict[str, Any] = {
        "ok": True,
        "item_type": cfg.ITEM_TYPE_PANEL_LETTERS_V1,
        "pricing_set_id": rate_card.pricing_set_id,
        "errors": [],
        "warnings": _warnings_for(layout, illumination) + outcome.warnings,
        "derived": asdict(outcome.derived),
        "costs": costs.as_dict(),
        "letter_sets_breakdown": [asdict(s) for s in costs.letter_sets],
        "markup_percent_applied": outcome.markup_percent,
        "line_total_pence": costs.line_total_pence,
    }
    if outcome.applied:
        output["overrides"] = outcome.applied
    return output
