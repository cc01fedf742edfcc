"""
conftest.py: Shared pytest fixtures for the signage quoter test suite.

Engine tests use the seed rate card from tuning_knobs, so expected figures in
the tests can be worked out by hand from that file:

  Aluminium 2.5mm @ 2.4 x 1.2 = 8500p/sheet, Powder Coating = 2500p/m2,
  Fabricated 200mm letter = 4000p, LED = 50p, 25 LEDs/m at 200mm,
  20W transformer = 1500p, fabrication labour = 5000p/h.

Service and API tests run against a throwaway in-memory SQLite database.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import quote_store
import tuning_knobs
from db import Base, get_db
from rate_card import RateCard


# ---------------------------------------------------------------------------
# Rate card / payload fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def rate_card():
    """Read-only rate card built from the seed data."""
    return RateCard.from_dict("ps-test", "Test rates", tuning_knobs.default_rate_card_data())


@pytest.fixture
def base_payload():
    """
    2400 x 1200 mm aluminium panel, powder coated, one set of unlit
    200mm fabricated letters, no labour, 20% markup.

      panel material = 1 x 8500         = 8500
      panel finish   = 2.88 m2 x 2500   = 7200
      letters        = 1 x 4000         = 4000
      materials base                    = 19700
      markup 20%                        = 3940
      line total                        = 23640
    """
    return {
        "width_mm": 2400,
        "height_mm": 1200,
        "allowance_mm": 0,
        "panel_size": "2.4 x 1.2",
        "panel_material": "Aluminium 2.5mm",
        "panel_finish": "Powder Coating",
        "aperture": None,
        "letter_sets": [
            {
                "type": "Fabricated",
                "qty": 1,
                "height_mm": 200,
                "finish": "Powder Coating",
                "illuminated": False,
            }
        ],
        "labour_hours": {"router": 0, "fabrication": 0, "assembly": 0, "vinyl": 0, "print": 0},
        "transformer_type": "20W",
        "markup_percent": 20,
        "overrides": [],
    }


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db_session():
    """Fresh in-memory database per test; one connection shared by all sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        quote_store.clear_rate_card_cache()
        engine.dispose()


@pytest.fixture
def active_pricing_set_id(db_session):
    """Seed rate card created and activated."""
    result = quote_store.seed_default_pricing_set(db_session)
    assert "id" in result, result
    return result["id"]


@pytest.fixture
def quote_id(db_session, active_pricing_set_id):
    result = quote_store.create_quote(db_session, customer_name="Acme Cafe", customer_email="owner@acme.test")
    assert "id" in result, result
    return result["id"]


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def client(db_session, monkeypatch):
    """TestClient bound to the test database, with API key checks off."""
    import api_app

    monkeypatch.setattr(api_app, "API_KEY", "")

    def _override_get_db():
        yield db_session

    api_app.app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(api_app.app)
    finally:
        api_app.app.dependency_overrides.clear()
