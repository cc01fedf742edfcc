# validation.py
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from quote_models import PanelLettersV1Input
from rate_card import RateCard

_LIST_LABELS = {"letter_sets": "Letter set", "overrides": "Override"}


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    errors: List[str] = field(default_factory=list)
    value: Optional[PanelLettersV1Input] = None


def format_error(err: Dict[str, Any]) -> str:
    """
    Render one pydantic error as a field-attributed message.

    ("letter_sets", 1, "finish") -> "Letter set 2 finish: ..."
    ("labour_hours", "router")   -> "labour_hours.router: ..."
    """
    loc = list(err.get("loc") or ())
    msg = err.get("msg", "invalid value")

    parts: List[str] = []
    if len(loc) >= 2 and loc[0] in _LIST_LABELS and isinstance(loc[1], int):
        parts.append(f"{_LIST_LABELS[loc[0]]} {loc[1] + 1}")
        loc = loc[2:]
        if loc:
            parts.append(" " + ".".join(str(p) for p in loc))
    elif loc:
        parts.append(".".join(str(p) for p in loc))

    path = "".join(parts)
    return f"{path}: {msg}" if path else msg


def validate(payload: Union[PanelLettersV1Input, Dict[str, Any]], rate_card: RateCard) -> ValidationResult:
    """
    Check a submission against the schema and the rate card.

    Never raises for bad input: every violation found is returned in
    ``errors`` so the caller can fix them all in one pass.
    """
    if isinstance(payload, PanelLettersV1Input):
        payload = payload.model_dump()

    try:
        value = PanelLettersV1Input.model_validate(payload, context={"rate_card": rate_card})
    except ValidationError as e:
        return ValidationResult(ok=False, errors=[format_error(err) for err in e.errors(include_url=False)])

    return ValidationResult(ok=True, value=value)
