"""
test_quote_store.py: Service-layer tests against an in-memory database.

Covers pricing-set lifecycle, quote CRUD and numbering, and the line-item
commit path (re-price on the server, persist input + output snapshots).
"""

import re
from unittest import mock

import pytest
from sqlalchemy.exc import OperationalError

import quote_store as store
import tuning_knobs
from db import PricingSet, Quote, QuoteAudit, QuoteItem


# ===========================================================================
# Pricing sets
# ===========================================================================

class TestPricingSets:

    def test_seed_creates_active_set(self, db_session, active_pricing_set_id):
        sets = store.list_pricing_sets(db_session)
        assert len(sets) == 1
        assert sets[0]["status"] == "active"
        assert sets[0]["effective_from"] is not None

    def test_seed_is_idempotent(self, db_session, active_pricing_set_id):
        assert store.seed_default_pricing_set(db_session) == {"id": active_pricing_set_id}
        assert len(store.list_pricing_sets(db_session)) == 1

    def test_new_draft_copies_active_rates(self, db_session, active_pricing_set_id):
        created = store.create_pricing_set(db_session, "2027 rates")
        draft = store.get_pricing_set(db_session, created["id"])
        active = store.get_pricing_set(db_session, active_pricing_set_id)
        assert draft["status"] == "draft"
        assert draft["rate_card"] == active["rate_card"]

    def test_create_rejects_unreadable_rate_card(self, db_session):
        result = store.create_pricing_set(db_session, "bad", {"panel_prices": [{"material": "x"}]})
        assert result["kind"] == store.VALIDATION

    def test_activate_archives_previous(self, db_session, active_pricing_set_id):
        draft_id = store.create_pricing_set(db_session, "2027 rates")["id"]
        assert store.activate_pricing_set(db_session, draft_id) == {"success": True}
        statuses = {ps["id"]: ps["status"] for ps in store.list_pricing_sets(db_session)}
        assert statuses == {active_pricing_set_id: "archived", draft_id: "active"}

    def test_activate_blocked_when_incomplete(self, db_session, active_pricing_set_id):
        data = tuning_knobs.default_rate_card_data()
        del data["manufacturing_rates"]["print"]
        draft_id = store.create_pricing_set(db_session, "partial", data)["id"]
        result = store.activate_pricing_set(db_session, draft_id)
        assert result["kind"] == store.CONFLICT
        assert "manufacturing_rates.print" in result["error"]
        assert result["errors"] == ["manufacturing_rates.print"]
        assert store.get_pricing_set(db_session, active_pricing_set_id)["status"] == "active"

    def test_completeness_report(self, db_session, active_pricing_set_id):
        report = store.check_pricing_set_completeness(db_session, active_pricing_set_id)
        assert report["ok"] is True
        assert report["missing"] == []

    def test_completeness_unknown_set(self, db_session):
        report = store.check_pricing_set_completeness(db_session, "nope")
        assert report["ok"] is False

    def test_edit_rates_on_draft(self, db_session, active_pricing_set_id):
        draft_id = store.create_pricing_set(db_session, "2027 rates")["id"]
        data = tuning_knobs.default_rate_card_data()
        data["panel_finishes"]["Powder Coating"] = 3000
        assert store.update_pricing_set(db_session, draft_id, rate_card=data) == {"success": True}
        rc = store.get_rate_card_for_pricing_set(db_session, draft_id)
        assert rc.finish_cost_per_m2("Powder Coating") == 3000

    def test_active_rates_are_frozen(self, db_session, active_pricing_set_id):
        result = store.update_pricing_set(
            db_session, active_pricing_set_id, rate_card=tuning_knobs.default_rate_card_data()
        )
        assert result["kind"] == store.CONFLICT

    def test_rename_active_allowed(self, db_session, active_pricing_set_id):
        assert store.update_pricing_set(db_session, active_pricing_set_id, name="Current") == {"success": True}
        assert store.get_pricing_set(db_session, active_pricing_set_id)["name"] == "Current"

    def test_delete_only_drafts(self, db_session, active_pricing_set_id):
        assert store.delete_pricing_set(db_session, active_pricing_set_id)["kind"] == store.CONFLICT
        draft_id = store.create_pricing_set(db_session, "scratch")["id"]
        assert store.delete_pricing_set(db_session, draft_id) == {"success": True}
        assert store.get_pricing_set(db_session, draft_id) is None

    def test_delete_missing(self, db_session):
        assert store.delete_pricing_set(db_session, "nope")["kind"] == store.NOT_FOUND


class TestRateCardResolution:

    def test_unknown_pricing_set_raises(self, db_session):
        with pytest.raises(store.PricingSetNotFound):
            store.get_rate_card_for_pricing_set(db_session, "nope")

    def test_active_rate_card_cached(self, db_session, active_pricing_set_id):
        first = store.get_rate_card_for_pricing_set(db_session, active_pricing_set_id)
        assert store.get_rate_card_for_pricing_set(db_session, active_pricing_set_id) is first

    def test_draft_rate_card_not_cached(self, db_session, active_pricing_set_id):
        draft_id = store.create_pricing_set(db_session, "draft")["id"]
        first = store.get_rate_card_for_pricing_set(db_session, draft_id)
        assert store.get_rate_card_for_pricing_set(db_session, draft_id) is not first

    def test_recalculate(self, db_session, active_pricing_set_id, base_payload):
        out = store.recalculate(db_session, active_pricing_set_id, base_payload)
        assert out["ok"]
        assert out["line_total_pence"] == 23640
        assert out["pricing_set_id"] == active_pricing_set_id

    def test_recalculate_unknown_set(self, db_session, base_payload):
        out = store.recalculate(db_session, "nope", base_payload)
        assert out["ok"] is False
        assert "Pricing set not found" in out["errors"][0]


# ===========================================================================
# Quotes
# ===========================================================================

class TestQuotes:

    def test_create_uses_active_pricing_set(self, db_session, active_pricing_set_id):
        created = store.create_quote(db_session, customer_name="Acme")
        view = store.get_quote_with_items(db_session, created["id"])
        assert view["quote"]["pricing_set_id"] == active_pricing_set_id
        assert view["quote"]["status"] == "draft"
        assert view["total_pence"] == 0

    def test_quote_numbers_sequential(self, db_session, active_pricing_set_id):
        first = store.create_quote(db_session)["quote_number"]
        second = store.create_quote(db_session)["quote_number"]
        assert re.fullmatch(r"Q-\d{4}-0001", first)
        assert second == first[:-4] + "0002"

    def test_create_without_active_set(self, db_session):
        assert store.create_quote(db_session)["kind"] == store.CONFLICT

    def test_create_with_unknown_set(self, db_session):
        assert store.create_quote(db_session, pricing_set_id="nope")["kind"] == store.NOT_FOUND

    def test_update_writes_audit(self, db_session, quote_id):
        assert store.update_quote(db_session, quote_id, {"customer_phone": "0123"}) == {"success": True}
        assert store.get_quote_with_items(db_session, quote_id)["quote"]["customer_phone"] == "0123"
        audits = db_session.query(QuoteAudit).filter(QuoteAudit.quote_id == quote_id).all()
        assert [a.action for a in audits] == ["update_quote"]

    def test_update_rejects_unknown_fields(self, db_session, quote_id):
        result = store.update_quote(db_session, quote_id, {"status": "accepted"})
        assert result["kind"] == store.VALIDATION

    def test_status_change(self, db_session, quote_id):
        assert store.update_quote_status(db_session, quote_id, "sent") == {"success": True}
        assert store.get_quote_with_items(db_session, quote_id)["quote"]["status"] == "sent"

    def test_invalid_status(self, db_session, quote_id):
        assert store.update_quote_status(db_session, quote_id, "paid")["kind"] == store.VALIDATION

    def test_list_filters(self, db_session, quote_id):
        store.create_quote(db_session, customer_name="Bistro Uno")
        assert len(store.list_quotes(db_session)) == 2
        assert [q["customer_name"] for q in store.list_quotes(db_session, search="acme")] == ["Acme Cafe"]
        assert store.list_quotes(db_session, status="sent") == []
        assert len(store.list_quotes(db_session, status="all")) == 2

    def test_delete_removes_items(self, db_session, quote_id, base_payload):
        store.add_quote_item(db_session, quote_id, base_payload)
        assert store.delete_quote(db_session, quote_id) == {"success": True}
        assert store.get_quote_with_items(db_session, quote_id) is None
        assert db_session.query(QuoteItem).count() == 0

    def test_duplicate_copies_items_verbatim(self, db_session, quote_id, base_payload):
        store.add_quote_item(db_session, quote_id, base_payload)
        store.add_quote_item(db_session, quote_id, base_payload)
        copy = store.duplicate_quote(db_session, quote_id)

        original = store.get_quote_with_items(db_session, quote_id)
        duplicated = store.get_quote_with_items(db_session, copy["id"])
        assert duplicated["quote"]["quote_number"] != original["quote"]["quote_number"]
        assert duplicated["quote"]["notes_internal"].startswith(f"Copied from {original['quote']['quote_number']}")
        assert duplicated["total_pence"] == original["total_pence"] == 2 * 23640
        assert [i["output_json"] for i in duplicated["items"]] == [i["output_json"] for i in original["items"]]


# ===========================================================================
# Quote items
# ===========================================================================

class TestQuoteItems:

    def test_add_persists_snapshots(self, db_session, quote_id, base_payload):
        result = store.add_quote_item(db_session, quote_id, base_payload)
        view = store.get_quote_with_items(db_session, quote_id)
        item = view["items"][0]
        assert item["id"] == result["id"]
        assert item["item_type"] == "panel_letters_v1"
        assert item["line_total_pence"] == 23640
        assert item["output_json"]["line_total_pence"] == 23640
        assert item["input_json"]["panel_material"] == "Aluminium 2.5mm"
        assert view["total_pence"] == 23640

    def test_stored_output_matches_recompute(self, db_session, quote_id, active_pricing_set_id, base_payload):
        base_payload["letter_sets"][0]["illuminated"] = True
        store.add_quote_item(db_session, quote_id, base_payload)
        item = store.get_quote_with_items(db_session, quote_id)["items"][0]
        assert store.recalculate(db_session, active_pricing_set_id, item["input_json"]) == item["output_json"]

    def test_add_invalid_returns_errors(self, db_session, quote_id, base_payload):
        base_payload["letter_sets"] = base_payload["letter_sets"] * 4
        result = store.add_quote_item(db_session, quote_id, base_payload)
        assert result["kind"] == store.VALIDATION
        assert result["error"] == "Validation failed"
        assert any("Between 1 and 3" in e for e in result["errors"])
        assert db_session.query(QuoteItem).count() == 0

    def test_add_to_missing_quote(self, db_session, active_pricing_set_id, base_payload):
        assert store.add_quote_item(db_session, "nope", base_payload)["kind"] == store.NOT_FOUND

    def test_positions_increase(self, db_session, quote_id, base_payload):
        store.add_quote_item(db_session, quote_id, base_payload)
        store.add_quote_item(db_session, quote_id, base_payload)
        items = store.get_quote_with_items(db_session, quote_id)["items"]
        assert [i["position"] for i in items] == [0, 1]

    def test_update_reprices(self, db_session, quote_id, base_payload):
        item_id = store.add_quote_item(db_session, quote_id, base_payload)["id"]
        base_payload["labour_hours"]["assembly"] = 1
        assert store.update_quote_item(db_session, quote_id, item_id, base_payload) == {"success": True}
        view = store.get_quote_with_items(db_session, quote_id)
        assert view["items"][0]["line_total_pence"] == 23640 + 4000
        assert view["total_pence"] == 23640 + 4000
        audit = db_session.query(QuoteAudit).filter(QuoteAudit.action == "update_item").one()
        assert audit.old_data["line_total_pence"] == 23640

    def test_update_invalid_keeps_old_item(self, db_session, quote_id, base_payload):
        item_id = store.add_quote_item(db_session, quote_id, base_payload)["id"]
        base_payload["markup_percent"] = 500
        assert store.update_quote_item(db_session, quote_id, item_id, base_payload)["kind"] == store.VALIDATION
        assert store.get_quote_with_items(db_session, quote_id)["items"][0]["line_total_pence"] == 23640

    def test_duplicate_item_not_repriced(self, db_session, quote_id, base_payload):
        item_id = store.add_quote_item(db_session, quote_id, base_payload)["id"]
        # tamper with the stored figure: a duplicate must copy it, not re-price
        db_session.query(QuoteItem).filter(QuoteItem.id == item_id).update({"line_total_pence": 1})
        db_session.commit()
        copy_id = store.duplicate_quote_item(db_session, quote_id, item_id)["id"]
        view = store.get_quote_with_items(db_session, quote_id)
        assert [i["id"] for i in view["items"]] == [item_id, copy_id]
        assert view["total_pence"] == 2

    def test_delete_item(self, db_session, quote_id, base_payload):
        item_id = store.add_quote_item(db_session, quote_id, base_payload)["id"]
        assert store.delete_quote_item(db_session, quote_id, item_id) == {"success": True}
        assert store.get_quote_with_items(db_session, quote_id)["items"] == []
        assert store.delete_quote_item(db_session, quote_id, item_id)["kind"] == store.NOT_FOUND

    def test_item_on_other_quote_not_found(self, db_session, quote_id, base_payload):
        item_id = store.add_quote_item(db_session, quote_id, base_payload)["id"]
        other_id = store.create_quote(db_session)["id"]
        assert store.delete_quote_item(db_session, other_id, item_id)["kind"] == store.NOT_FOUND

    def test_write_failure_is_rolled_back(self, db_session, quote_id, base_payload):
        with mock.patch.object(db_session, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
            result = store.add_quote_item(db_session, quote_id, base_payload)
        assert result["kind"] == store.PERSISTENCE
        assert "disk full" in result["error"]
        assert db_session.query(QuoteItem).count() == 0
        assert "errors" not in result

        # the rolled-back session carries on working
        assert "id" in store.add_quote_item(db_session, quote_id, base_payload)
        assert store.get_quote_with_items(db_session, quote_id)["total_pence"] == 23640

    def test_missing_pricing_set_is_not_found(self, db_session, quote_id, base_payload):
        db_session.query(Quote).filter(Quote.id == quote_id).update({"pricing_set_id": "gone"})
        db_session.commit()
        result = store.add_quote_item(db_session, quote_id, base_payload)
        assert result["kind"] == store.NOT_FOUND
        assert "Pricing set not found" in result["error"]

    def test_unreadable_rate_card_is_persistence_error(self, db_session, quote_id, active_pricing_set_id, base_payload):
        db_session.query(PricingSet).filter(PricingSet.id == active_pricing_set_id).update(
            {"rate_card_json": {"panel_prices": [{"material": "x"}]}}
        )
        db_session.commit()
        store.clear_rate_card_cache()
        result = store.add_quote_item(db_session, quote_id, base_payload)
        assert result["kind"] == store.PERSISTENCE
        assert db_session.query(QuoteItem).count() == 0
