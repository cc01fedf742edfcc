# overrides.py
"""
Audited manual overrides.

An override replaces an input (a labour hour figure or the markup percent),
never a computed cost. ``apply_overrides`` re-runs the labour and markup steps
with the substituted inputs, so the line total always reconciles with the
line items shown next to it. Overrides reaching this module have already
passed validation (reason code from the closed list, non-empty note).
"""
import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Sequence, Tuple

from money import labour_cost_pence, markup_pence
from quote_models import OverrideEntry, PanelLettersV1Input
from rate_card import RateCard

if TYPE_CHECKING:
    from pricing_engine import Costs, Derived

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverrideOutcome:
    costs: "Costs"
    derived: "Derived"
    markup_percent: float
    applied: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


def effective_values(
    labour_hours: Mapping[str, float],
    markup_percent: float,
    overrides: Sequence[OverrideEntry],
) -> Tuple[Dict[str, float], float]:
    """Labour hours and markup percent after substituting overridden inputs."""
    hours = dict(labour_hours)
    markup = markup_percent
    for o in overrides:
        if o.field_path == "markup_percent":
            markup = o.override
        else:
            hours[o.field_path.split(".", 1)[1]] = o.override
    return hours, markup


def echo_overrides(overrides: Sequence[OverrideEntry]) -> Dict[str, Any]:
    """Applied overrides in the nested shape stored with the quote item."""
    echoed: Dict[str, Any] = {}
    for o in overrides:
        record = {
            "original": o.original,
            "override": o.override,
            "reason_code": o.reason_code,
            "note": o.note,
        }
        if o.field_path == "markup_percent":
            echoed["markup_percent"] = record
        else:
            task = o.field_path.split(".", 1)[1]
            echoed.setdefault("labour_hours", {})[task] = record
    return echoed


def apply_overrides(
    costs: "Costs",
    derived: "Derived",
    value: PanelLettersV1Input,
    rate_card: RateCard,
) -> OverrideOutcome:
    overrides = value.overrides
    hours, markup = effective_values(value.labour_hours.model_dump(), value.markup_percent, overrides)
    if not overrides:
        return OverrideOutcome(costs=costs, derived=derived, markup_percent=markup)

    warnings = []
    for o in overrides:
        submitted = value.input_value(o.field_path)
        if o.original != submitted:
            warnings.append(
                f"Override for {o.field_path} records original {o.original:g} but the submitted value is {submitted:g}"
            )

    adjusted = replace(
        costs,
        labour_cost_pence=labour_cost_pence(hours, rate_card.manufacturing_rate_by_task),
        materials_markup_pence=markup_pence(costs.materials_base_pence, markup),
    )
    logger.info(
        "Applied %d override(s) on pricing set %s: %s",
        len(overrides),
        rate_card.pricing_set_id,
        ", ".join(f"{o.field_path}={o.override:g} ({o.reason_code})" for o in overrides),
    )
    return OverrideOutcome(
        costs=adjusted,
        derived=derived,
        markup_percent=markup,
        applied=echo_overrides(overrides),
        warnings=warnings,
    )
