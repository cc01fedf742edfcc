# quote_store.py
"""
Quote service: pricing sets, quotes and quote line items.

Every function takes an open SQLAlchemy session. Mutations return plain dicts:
``{"id": ...}`` / ``{"success": True}`` on success, or
``{"error": message, "kind": ..., "errors": [...]}`` on failure, where
``kind`` is one of ``validation``, ``not_found``, ``conflict``,
``persistence``. Nothing here raises for a bad request; database failures are
rolled back and logged.

Line items are stored as input/output snapshots. A quote's total is the sum of
its stored ``line_total_pence`` values and is never re-priced on read.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import pricing_config as cfg
import tuning_knobs
from db import PricingSet, Quote, QuoteAudit, QuoteItem
from money import format_gbp
from pricing_engine import calculate_panel_letters_v1, failed_output
from quote_models import PanelLettersV1Input, dump_input
from rate_card import RateCard, RateCardError, assert_rate_card_complete, check_completeness

logger = logging.getLogger(__name__)

VALIDATION = "validation"
NOT_FOUND = "not_found"
CONFLICT = "conflict"
PERSISTENCE = "persistence"

Payload = Union[PanelLettersV1Input, Dict[str, Any]]

# Non-draft rate cards never change, so they are safe to keep per process
_rate_card_cache: Dict[str, RateCard] = {}
_cache_lock = threading.Lock()


class PricingSetNotFound(RateCardError):
    pass


def _error(message: str, kind: str, errors: Optional[List[str]] = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {"error": message, "kind": kind}
    if errors:
        out["errors"] = list(errors)
    return out


def _persistence_error(db: Session, action: str, e: SQLAlchemyError) -> Dict[str, Any]:
    db.rollback()
    logger.exception("Error %s", action)
    return _error(str(e.__cause__ or e), PERSISTENCE)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ----------------------------
# Serialisation
# ----------------------------
def _pricing_set_dict(ps: PricingSet, with_rate_card: bool = False) -> Dict[str, Any]:
    out = {
        "id": ps.id,
        "name": ps.name,
        "status": ps.status,
        "effective_from": _iso(ps.effective_from),
        "created_at": _iso(ps.created_at),
    }
    if with_rate_card:
        out["rate_card"] = ps.rate_card_json
    return out


def _quote_dict(q: Quote) -> Dict[str, Any]:
    return {
        "id": q.id,
        "quote_number": q.quote_number,
        "customer_name": q.customer_name,
        "customer_email": q.customer_email,
        "customer_phone": q.customer_phone,
        "status": q.status,
        "pricing_set_id": q.pricing_set_id,
        "notes_internal": q.notes_internal,
        "created_at": _iso(q.created_at),
        "updated_at": _iso(q.updated_at),
    }


def _item_dict(i: QuoteItem) -> Dict[str, Any]:
    return {
        "id": i.id,
        "quote_id": i.quote_id,
        "position": i.position,
        "item_type": i.item_type,
        "input_json": i.input_json,
        "output_json": i.output_json,
        "line_total_pence": i.line_total_pence,
        "created_at": _iso(i.created_at),
    }


# ----------------------------
# Rate cards
# ----------------------------
def clear_rate_card_cache() -> None:
    with _cache_lock:
        _rate_card_cache.clear()


def get_rate_card_for_pricing_set(db: Session, pricing_set_id: str) -> RateCard:
    """
    Resolve a pricing set to its read-only rate card.

    Raises PricingSetNotFound when the set does not exist, RateCardError when
    its stored rate card cannot be read.
    """
    with _cache_lock:
        cached = _rate_card_cache.get(pricing_set_id)
    if cached is not None:
        return cached

    ps = db.query(PricingSet).filter(PricingSet.id == pricing_set_id).first()
    if ps is None:
        raise PricingSetNotFound(f"Pricing set not found: {pricing_set_id}")

    rate_card = RateCard.from_dict(ps.id, ps.name, ps.rate_card_json or {})
    if ps.status != "draft":
        with _cache_lock:
            _rate_card_cache[ps.id] = rate_card
    return rate_card


def get_active_pricing_set(db: Session) -> Optional[PricingSet]:
    return db.query(PricingSet).filter(PricingSet.status == "active").first()


def recalculate(db: Session, pricing_set_id: str, payload: Payload) -> Dict[str, Any]:
    """Price a line item without saving it (live preview)."""
    try:
        rate_card = get_rate_card_for_pricing_set(db, pricing_set_id)
    except RateCardError as e:
        logger.warning("Recalculate against pricing set %s failed: %s", pricing_set_id, e)
        return failed_output([str(e)], pricing_set_id)
    return calculate_panel_letters_v1(payload, rate_card)


def _price_for_quote(db: Session, quote: Quote, payload: Payload) -> Dict[str, Any]:
    # never trust a client-side figure; always re-price here
    try:
        rate_card = get_rate_card_for_pricing_set(db, quote.pricing_set_id)
    except PricingSetNotFound as e:
        return _error(str(e), NOT_FOUND)
    except RateCardError as e:
        logger.error("Stored rate card for pricing set %s is unreadable: %s", quote.pricing_set_id, e)
        return _error(str(e), PERSISTENCE)

    output = calculate_panel_letters_v1(payload, rate_card)
    if not output["ok"]:
        return _error("Validation failed", VALIDATION, output["errors"])
    return output


def _input_snapshot(payload: Payload) -> Dict[str, Any]:
    if not isinstance(payload, PanelLettersV1Input):
        payload = PanelLettersV1Input.model_validate(payload)
    return dump_input(payload)


def _audit(db: Session, quote_id: str, action: str, summary: str, old_data=None, new_data=None) -> None:
    db.add(QuoteAudit(quote_id=quote_id, action=action, summary=summary, old_data=old_data, new_data=new_data))


# ----------------------------
# Quote items
# ----------------------------
def _get_quote(db: Session, quote_id: str) -> Optional[Quote]:
    return db.query(Quote).filter(Quote.id == quote_id).first()


def _get_item(db: Session, quote_id: str, item_id: str) -> Optional[QuoteItem]:
    return db.query(QuoteItem).filter(QuoteItem.id == item_id, QuoteItem.quote_id == quote_id).first()


def _next_position(db: Session, quote_id: str) -> int:
    current = db.query(func.max(QuoteItem.position)).filter(QuoteItem.quote_id == quote_id).scalar()
    return 0 if current is None else current + 1


def _items_for(db: Session, quote_id: str) -> List[QuoteItem]:
    return (
        db.query(QuoteItem)
        .filter(QuoteItem.quote_id == quote_id)
        .order_by(QuoteItem.position, QuoteItem.created_at)
        .all()
    )


def add_quote_item(db: Session, quote_id: str, payload: Payload) -> Dict[str, Any]:
    """Validate, price and persist a new panel + letters line on a quote."""
    quote = _get_quote(db, quote_id)
    if quote is None:
        return _error("Quote not found", NOT_FOUND)

    output = _price_for_quote(db, quote, payload)
    if "error" in output:
        return output

    try:
        item = QuoteItem(
            quote_id=quote.id,
            position=_next_position(db, quote.id),
            item_type=cfg.ITEM_TYPE_PANEL_LETTERS_V1,
            input_json=_input_snapshot(payload),
            output_json=output,
            line_total_pence=output["line_total_pence"],
        )
        db.add(item)
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "adding quote item", e)

    logger.info("Added item %s to quote %s (%s)", item.id, quote.quote_number, format_gbp(item.line_total_pence))
    return {"id": item.id}


def update_quote_item(db: Session, quote_id: str, item_id: str, payload: Payload) -> Dict[str, Any]:
    """Re-price an existing line against its quote's pricing set and overwrite it."""
    quote = _get_quote(db, quote_id)
    if quote is None:
        return _error("Quote not found", NOT_FOUND)
    item = _get_item(db, quote_id, item_id)
    if item is None:
        return _error("Item not found", NOT_FOUND)

    output = _price_for_quote(db, quote, payload)
    if "error" in output:
        return output

    old = _item_dict(item)
    try:
        item.input_json = _input_snapshot(payload)
        item.output_json = output
        item.line_total_pence = output["line_total_pence"]
        _audit(
            db,
            quote.id,
            "update_item",
            f"Updated item: recalculated total {format_gbp(item.line_total_pence)}",
            old_data=old,
            new_data={"input": item.input_json, "output": output},
        )
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "updating quote item", e)

    return {"success": True}


def duplicate_quote_item(db: Session, quote_id: str, item_id: str) -> Dict[str, Any]:
    """Copy a line verbatim within its quote; the copy is not re-priced."""
    original = _get_item(db, quote_id, item_id)
    if original is None:
        return _error("Item not found", NOT_FOUND)

    try:
        copy = QuoteItem(
            quote_id=quote_id,
            position=_next_position(db, quote_id),
            item_type=original.item_type,
            input_json=original.input_json,
            output_json=original.output_json,
            line_total_pence=original.line_total_pence,
        )
        db.add(copy)
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "duplicating quote item", e)

    return {"id": copy.id}


def delete_quote_item(db: Session, quote_id: str, item_id: str) -> Dict[str, Any]:
    item = _get_item(db, quote_id, item_id)
    if item is None:
        return _error("Item not found", NOT_FOUND)

    try:
        _audit(db, quote_id, "delete_item", f"Deleted item {item.id}", old_data=_item_dict(item))
        db.delete(item)
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "deleting quote item", e)

    return {"success": True}


# ----------------------------
# Quotes
# ----------------------------
_QUOTE_EDITABLE_FIELDS = ("customer_name", "customer_email", "customer_phone", "notes_internal")


def _next_quote_number(db: Session, year: int) -> str:
    prefix = f"Q-{year}-"
    numbers = db.query(Quote.quote_number).filter(Quote.quote_number.like(f"{prefix}%")).all()
    seqs = [int(n[len(prefix):]) for (n,) in numbers if n[len(prefix):].isdigit()]
    return f"{prefix}{(max(seqs) if seqs else 0) + 1:04d}"


def create_quote(
    db: Session,
    pricing_set_id: Optional[str] = None,
    customer_name: Optional[str] = None,
    customer_email: Optional[str] = None,
    customer_phone: Optional[str] = None,
    notes_internal: Optional[str] = None,
) -> Dict[str, Any]:
    """New draft quote, priced against the given pricing set or the active one."""
    if pricing_set_id is None:
        active = get_active_pricing_set(db)
        if active is None:
            return _error("No active pricing set", CONFLICT)
        pricing_set_id = active.id
    elif db.query(PricingSet).filter(PricingSet.id == pricing_set_id).first() is None:
        return _error("Pricing set not found", NOT_FOUND)

    try:
        quote = Quote(
            quote_number=_next_quote_number(db, datetime.now(timezone.utc).year),
            customer_name=customer_name or None,
            customer_email=customer_email or None,
            customer_phone=customer_phone or None,
            notes_internal=notes_internal or None,
            pricing_set_id=pricing_set_id,
            status="draft",
        )
        db.add(quote)
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "creating quote", e)

    logger.info("Created quote %s on pricing set %s", quote.quote_number, pricing_set_id)
    return {"id": quote.id, "quote_number": quote.quote_number}


def update_quote(db: Session, quote_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    quote = _get_quote(db, quote_id)
    if quote is None:
        return _error("Quote not found", NOT_FOUND)

    unknown = sorted(set(changes) - set(_QUOTE_EDITABLE_FIELDS))
    if unknown:
        return _error("Validation failed", VALIDATION, [f"{k}: field cannot be edited" for k in unknown])

    old = _quote_dict(quote)
    try:
        for key, value in changes.items():
            setattr(quote, key, value)
        _audit(db, quote.id, "update_quote", "Updated customer details", old_data=old, new_data=dict(changes))
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "updating quote", e)

    return {"success": True}


def update_quote_status(db: Session, quote_id: str, status: str) -> Dict[str, Any]:
    if status not in cfg.QUOTE_STATUSES:
        return _error(
            "Validation failed",
            VALIDATION,
            [f"status: must be one of {', '.join(cfg.QUOTE_STATUSES)}"],
        )
    quote = _get_quote(db, quote_id)
    if quote is None:
        return _error("Quote not found", NOT_FOUND)

    old_status = quote.status
    try:
        quote.status = status
        _audit(
            db,
            quote.id,
            "update_status",
            f"Status {old_status} -> {status}",
            old_data={"status": old_status},
            new_data={"status": status},
        )
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "updating quote status", e)

    return {"success": True}


def delete_quote(db: Session, quote_id: str) -> Dict[str, Any]:
    quote = _get_quote(db, quote_id)
    if quote is None:
        return _error("Quote not found", NOT_FOUND)

    try:
        _audit(db, quote.id, "delete_quote", f"Deleted quote {quote.quote_number}", old_data=_quote_dict(quote))
        db.delete(quote)
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "deleting quote", e)

    logger.info("Deleted quote %s", quote_id)
    return {"success": True}


def duplicate_quote(db: Session, quote_id: str) -> Dict[str, Any]:
    """New draft quote with a fresh number; every item is copied as stored."""
    original = _get_quote(db, quote_id)
    if original is None:
        return _error("Quote not found", NOT_FOUND)

    if original.notes_internal:
        notes = f"Copied from {original.quote_number}: {original.notes_internal}"
    else:
        notes = f"Copied from {original.quote_number}"

    try:
        copy = Quote(
            quote_number=_next_quote_number(db, datetime.now(timezone.utc).year),
            customer_name=original.customer_name,
            customer_email=original.customer_email,
            customer_phone=original.customer_phone,
            pricing_set_id=original.pricing_set_id,
            notes_internal=notes,
            status="draft",
        )
        db.add(copy)
        db.flush()
        for item in _items_for(db, original.id):
            db.add(
                QuoteItem(
                    quote_id=copy.id,
                    position=item.position,
                    item_type=item.item_type,
                    input_json=item.input_json,
                    output_json=item.output_json,
                    line_total_pence=item.line_total_pence,
                )
            )
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "duplicating quote", e)

    return {"id": copy.id, "quote_number": copy.quote_number}


def list_quotes(db: Session, status: Optional[str] = None, search: Optional[str] = None) -> List[Dict[str, Any]]:
    query = db.query(Quote)
    if status and status != "all":
        query = query.filter(Quote.status == status)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Quote.quote_number.ilike(pattern), Quote.customer_name.ilike(pattern)))
    return [_quote_dict(q) for q in query.order_by(Quote.created_at.desc(), Quote.quote_number.desc()).all()]


def get_quote_with_items(db: Session, quote_id: str) -> Optional[Dict[str, Any]]:
    quote = _get_quote(db, quote_id)
    if quote is None:
        return None
    items = [_item_dict(i) for i in _items_for(db, quote.id)]
    return {
        "quote": _quote_dict(quote),
        "items": items,
        "total_pence": sum(i["line_total_pence"] for i in items),
    }


# ----------------------------
# Pricing sets
# ----------------------------
def _get_pricing_set(db: Session, pricing_set_id: str) -> Optional[PricingSet]:
    return db.query(PricingSet).filter(PricingSet.id == pricing_set_id).first()


def _normalised_rate_card(pricing_set_id: str, name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    # round-trip so only readable rate cards are ever stored
    return RateCard.from_dict(pricing_set_id, name, data).to_dict()


def list_pricing_sets(db: Session) -> List[Dict[str, Any]]:
    sets = db.query(PricingSet).order_by(PricingSet.created_at.desc()).all()
    return [_pricing_set_dict(ps) for ps in sets]


def get_pricing_set(db: Session, pricing_set_id: str) -> Optional[Dict[str, Any]]:
    ps = _get_pricing_set(db, pricing_set_id)
    return _pricing_set_dict(ps, with_rate_card=True) if ps else None


def create_pricing_set(db: Session, name: str, rate_card: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    New draft pricing set.

    Starts from the supplied rate card, else a copy of the active set's, else
    the seed rate card in tuning_knobs.
    """
    if rate_card is None:
        active = get_active_pricing_set(db)
        rate_card = dict(active.rate_card_json) if active else tuning_knobs.default_rate_card_data()

    try:
        data = _normalised_rate_card("new", name, rate_card)
    except RateCardError as e:
        return _error("Validation failed", VALIDATION, [str(e)])

    try:
        ps = PricingSet(name=name, status="draft", rate_card_json=data)
        db.add(ps)
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "creating pricing set", e)

    logger.info("Created draft pricing set %s (%s)", ps.id, name)
    return {"id": ps.id}


def update_pricing_set(
    db: Session,
    pricing_set_id: str,
    name: Optional[str] = None,
    effective_from: Optional[datetime] = None,
    rate_card: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    ps = _get_pricing_set(db, pricing_set_id)
    if ps is None:
        return _error("Pricing set not found", NOT_FOUND)

    data = None
    if rate_card is not None:
        if ps.status != "draft":
            return _error("Only draft pricing sets can have their rates edited", CONFLICT)
        try:
            data = _normalised_rate_card(ps.id, name or ps.name, rate_card)
        except RateCardError as e:
            return _error("Validation failed", VALIDATION, [str(e)])

    try:
        if name is not None:
            ps.name = name
        if effective_from is not None:
            ps.effective_from = effective_from
        if data is not None:
            ps.rate_card_json = data
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "updating pricing set", e)

    return {"success": True}


def delete_pricing_set(db: Session, pricing_set_id: str) -> Dict[str, Any]:
    ps = _get_pricing_set(db, pricing_set_id)
    if ps is None:
        return _error("Pricing set not found", NOT_FOUND)
    if ps.status != "draft":
        return _error("Can only delete draft pricing sets", CONFLICT)
    if db.query(Quote.id).filter(Quote.pricing_set_id == ps.id).first() is not None:
        return _error("Pricing set is used by existing quotes", CONFLICT)

    try:
        db.delete(ps)
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "deleting pricing set", e)

    return {"success": True}


def check_pricing_set_completeness(db: Session, pricing_set_id: str) -> Dict[str, Any]:
    try:
        rate_card = get_rate_card_for_pricing_set(db, pricing_set_id)
    except RateCardError as e:
        return {"ok": False, "missing": [str(e)], "warnings": []}
    result = check_completeness(rate_card)
    return {"ok": result.ok, "missing": result.missing, "warnings": result.warnings}


def activate_pricing_set(db: Session, pricing_set_id: str) -> Dict[str, Any]:
    """Make a complete pricing set the active one; the previous active set is archived."""
    ps = _get_pricing_set(db, pricing_set_id)
    if ps is None:
        return _error("Pricing set not found", NOT_FOUND)
    if ps.status == "active":
        return {"success": True}

    try:
        assert_rate_card_complete(get_rate_card_for_pricing_set(db, pricing_set_id))
    except RateCardError as e:
        return _error(f"Cannot activate: {e}", CONFLICT, e.missing_keys)

    try:
        previous = get_active_pricing_set(db)
        if previous is not None:
            previous.status = "archived"
        ps.status = "active"
        ps.effective_from = datetime.now(timezone.utc)
        db.commit()
    except SQLAlchemyError as e:
        return _persistence_error(db, "activating pricing set", e)

    logger.info(
        "Activated pricing set %s%s",
        ps.id,
        f" (archived {previous.id})" if previous is not None else "",
    )
    return {"success": True}


def seed_default_pricing_set(db: Session, name: str = tuning_knobs.DEFAULT_PRICING_SET_NAME) -> Dict[str, Any]:
    """Create and activate the seed rate card when no pricing set is active yet."""
    active = get_active_pricing_set(db)
    if active is not None:
        return {"id": active.id}

    created = create_pricing_set(db, name, tuning_knobs.default_rate_card_data())
    if "error" in created:
        return created
    activated = activate_pricing_set(db, created["id"])
    if "error" in activated:
        return activated
    return created
