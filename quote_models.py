# quote_models.py
"""
Input schema for a "panel_letters_v1" quote line.

Shape and range checks are plain pydantic constraints. Checks that need the
rate card (priced material, finish rules, height brackets, ...) run in the
same validation pass when a RateCard is passed as validation context:

    PanelLettersV1Input.model_validate(payload, context={"rate_card": rc})

so every problem in a submission is reported together. Without a rate card
in the context only the shape is checked (e.g. when re-reading a stored
input snapshot).
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic_core import PydanticCustomError

import pricing_config as cfg
from rate_card import RateCard, parse_sheet_size

LetterType = Literal[cfg.LETTER_TYPES]
PanelSize = Literal[cfg.PANEL_SIZES]
OpalType = Literal[cfg.OPAL_TYPES]
TransformerType = Literal[cfg.TRANSFORMER_TYPES]
ReasonCode = Literal[cfg.OVERRIDE_REASON_CODES]
OverrideField = Literal[cfg.OVERRIDABLE_FIELDS]


def _rate_card(info: ValidationInfo) -> Optional[RateCard]:
    return (info.context or {}).get("rate_card")


def _fail(kind: str, detail: str) -> PydanticCustomError:
    return PydanticCustomError(kind, "{detail}", {"detail": detail})


class ApertureInput(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    width_mm: float = Field(gt=0)
    height_mm: float = Field(gt=0)
    opal_type: OpalType

    @model_validator(mode="after")
    def _opal_priced(self, info: ValidationInfo) -> "ApertureInput":
        rc = _rate_card(info)
        if rc is None:
            return self
        sheet = rc.opal_sheet(self.opal_type)
        if sheet is None or parse_sheet_size(sheet[0]) is None:
            raise _fail("opal_not_priced", f"Opal price not found for: {self.opal_type}")
        return self


class LetterSetInput(BaseModel):
    type: LetterType
    qty: int = Field(ge=1)
    height_mm: int = Field(ge=cfg.LETTER_HEIGHT_MIN_MM, le=cfg.LETTER_HEIGHT_MAX_MM)
    finish: str = Field(min_length=1)
    illuminated: bool = False

    # rate-card checks are per field, independent of qty
    @field_validator("height_mm")
    @classmethod
    def _height_priced(cls, v: int, info: ValidationInfo) -> int:
        rc = _rate_card(info)
        letter_type = info.data.get("type")
        if rc is not None and letter_type is not None and rc.letter_base_cost(letter_type, v) is None:
            raise _fail("letter_not_priced", f"No letter price for {letter_type} at {v}mm")
        return v

    @field_validator("finish")
    @classmethod
    def _finish_allowed(cls, v: str, info: ValidationInfo) -> str:
        rc = _rate_card(info)
        letter_type = info.data.get("type")
        if rc is None or letter_type is None:
            return v
        allowed = rc.allowed_finishes(letter_type)
        if not allowed:
            raise _fail("finish_rules_missing", f'No finish rules found for type "{letter_type}"')
        if v not in allowed:
            raise _fail(
                "finish_not_allowed",
                f'Finish "{v}" not allowed for type "{letter_type}". Allowed: {", ".join(sorted(allowed))}',
            )
        return v

    @field_validator("illuminated")
    @classmethod
    def _led_density_priced(cls, v: bool, info: ValidationInfo) -> bool:
        rc = _rate_card(info)
        height = info.data.get("height_mm")
        if v and rc is not None and height is not None and rc.leds_per_metre(height) is None:
            raise _fail("led_density_missing", f"No LED density for {height}mm letters")
        return v


class LabourHours(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    router: float = Field(default=0, ge=0)
    fabrication: float = Field(default=0, ge=0)
    assembly: float = Field(default=0, ge=0)
    vinyl: float = Field(default=0, ge=0)
    print: float = Field(default=0, ge=0)


class OverrideEntry(BaseModel):
    """One audited manual substitution of an input value."""

    model_config = ConfigDict(allow_inf_nan=False)

    field_path: OverrideField
    original: float = Field(ge=0)
    override: float = Field(ge=0)
    reason_code: ReasonCode
    note: str

    @field_validator("note")
    @classmethod
    def _note_required(cls, v: str) -> str:
        if not v.strip():
            raise _fail("override_note_required", "Note is required for overrides")
        return v

    @model_validator(mode="after")
    def _markup_in_range(self) -> "OverrideEntry":
        if self.field_path == "markup_percent" and max(self.original, self.override) > cfg.MARKUP_MAX_PERCENT:
            raise _fail(
                "override_markup_range",
                f"Markup override values must be between {cfg.MARKUP_MIN_PERCENT} and {cfg.MARKUP_MAX_PERCENT}",
            )
        return self


def _flatten_overrides(v: Any) -> Any:
    # {"markup_percent": {...}, "labour_hours": {"router": {...}}} -> list of entries
    if v is None:
        return []
    if not isinstance(v, dict):
        return v

    entries: List[Any] = []
    for key, value in v.items():
        if key == "labour_hours" and isinstance(value, dict):
            for task, entry in value.items():
                if entry is None:
                    continue
                entries.append({**entry, "field_path": f"labour_hours.{task}"} if isinstance(entry, dict) else entry)
        elif value is not None:
            entries.append({**value, "field_path": key} if isinstance(value, dict) else value)
    return entries


class PanelLettersV1Input(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    width_mm: float = Field(gt=0)
    height_mm: float = Field(gt=0)
    allowance_mm: float = Field(default=0, ge=0)
    panel_size: PanelSize
    panel_material: str = Field(min_length=1)
    panel_finish: str = Field(min_length=1)
    aperture: Optional[ApertureInput] = None
    letter_sets: List[LetterSetInput]
    labour_hours: LabourHours = Field(default_factory=LabourHours)
    transformer_type: TransformerType
    markup_percent: float = Field(ge=cfg.MARKUP_MIN_PERCENT, le=cfg.MARKUP_MAX_PERCENT)
    overrides: List[OverrideEntry] = Field(default_factory=list)

    @field_validator("panel_material")
    @classmethod
    def _material_priced(cls, v: str, info: ValidationInfo) -> str:
        rc = _rate_card(info)
        if rc is None:
            return v
        size = info.data.get("panel_size")
        if size is not None:
            if rc.panel_unit_price(v, size) is None:
                raise _fail("panel_not_priced", f"Panel price not found for: {v} @ {size}")
        elif not any(m == v for (m, _) in rc.panel_price_by_material_and_size):
            raise _fail("panel_not_priced", f"Panel material not found: {v}")
        return v

    @field_validator("panel_finish")
    @classmethod
    def _finish_priced(cls, v: str, info: ValidationInfo) -> str:
        rc = _rate_card(info)
        if rc is not None and rc.finish_cost_per_m2(v) is None:
            raise _fail("finish_not_priced", f"Panel finish not found: {v}")
        return v

    @field_validator("aperture")
    @classmethod
    def _aperture_fits_panel(cls, v: Optional[ApertureInput], info: ValidationInfo) -> Optional[ApertureInput]:
        if v is None:
            return v
        width = info.data.get("width_mm")
        height = info.data.get("height_mm")
        if (width is not None and v.width_mm > width) or (height is not None and v.height_mm > height):
            panel = f"panel {width:g}mm x {height:g}mm" if width is not None and height is not None else "the panel"
            raise _fail(
                "aperture_too_large",
                f"Aperture {v.width_mm:g}mm x {v.height_mm:g}mm exceeds {panel}",
            )
        return v

    @field_validator("letter_sets", mode="before")
    @classmethod
    def _letter_set_count(cls, v: Any) -> Any:
        if isinstance(v, list) and not (cfg.MIN_LETTER_SETS <= len(v) <= cfg.MAX_LETTER_SETS):
            raise _fail(
                "letter_set_count",
                f"Between {cfg.MIN_LETTER_SETS} and {cfg.MAX_LETTER_SETS} letter sets are required, got {len(v)}",
            )
        return v

    @field_validator("labour_hours")
    @classmethod
    def _labour_rates_priced(cls, v: LabourHours, info: ValidationInfo) -> LabourHours:
        rc = _rate_card(info)
        if rc is None:
            return v
        missing = [t for t in cfg.LABOUR_TASKS if rc.labour_rate(t) is None]
        if missing:
            raise _fail("labour_rate_missing", f"Manufacturing rate not found: {', '.join(missing)}")
        return v

    @field_validator("transformer_type")
    @classmethod
    def _transformer_priced(cls, v: str, info: ValidationInfo) -> str:
        rc = _rate_card(info)
        if rc is not None and rc.transformer(v) is None:
            raise _fail("transformer_not_priced", f"Transformer type not found: {v}")
        return v

    @field_validator("overrides", mode="before")
    @classmethod
    def _overrides_as_list(cls, v: Any) -> Any:
        return _flatten_overrides(v)

    @field_validator("overrides")
    @classmethod
    def _one_override_per_field(cls, v: List[OverrideEntry]) -> List[OverrideEntry]:
        seen = set()
        for entry in v:
            if entry.field_path in seen:
                raise _fail("override_duplicate", f"{entry.field_path} is overridden more than once")
            seen.add(entry.field_path)
        return v

    def input_value(self, field_path: str) -> float:
        """Submitted (pre-override) value of an overridable field."""
        if field_path == "markup_percent":
            return self.markup_percent
        _, task = field_path.split(".", 1)
        return getattr(self.labour_hours, task)


def dump_input(value: PanelLettersV1Input) -> Dict[str, Any]:
    """JSON-ready input snapshot as persisted on a quote item."""
    return value.model_dump(mode="json")
