# db.py
import logging
import os
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

logger = logging.getLogger(__name__)

# ----------------------------
# Config
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./quoter.db")
# Render-style URLs
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ----------------------------
# Models
# ----------------------------
class PricingSet(Base):
    __tablename__ = "pricing_sets"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="draft", index=True)  # draft / active / archived
    effective_from = Column(DateTime(timezone=True), nullable=True)
    rate_card_json = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_now)


class Quote(Base):
    __tablename__ = "quotes"

    id = Column(String, primary_key=True, default=_uuid)
    quote_number = Column(String, unique=True, nullable=False, index=True)
    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    status = Column(String, nullable=False, default="draft", index=True)
    pricing_set_id = Column(String, ForeignKey("pricing_sets.id"), nullable=False)
    notes_internal = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    items = relationship(
        "QuoteItem",
        back_populates="quote",
        order_by="QuoteItem.position",
        cascade="all, delete-orphan",
    )


class QuoteItem(Base):
    __tablename__ = "quote_items"

    id = Column(String, primary_key=True, default=_uuid)
    quote_id = Column(String, ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    item_type = Column(String, nullable=False)
    input_json = Column(JSON, nullable=False)
    output_json = Column(JSON, nullable=False)
    line_total_pence = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now)

    quote = relationship("Quote", back_populates="items")


class QuoteAudit(Base):
    __tablename__ = "quote_audits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    quote_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)
    summary = Column(String, nullable=False)
    old_data = Column(JSON, nullable=True)
    new_data = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)


# ----------------------------
# Engine / sessions
# ----------------------------
def make_engine(url: str = DATABASE_URL):
    kwargs = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **kwargs)


engine = make_engine()
SessionLocal = sessionmaker(bind=engine)


def init_db(bind=None) -> None:
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables ensured")


def get_db():
    """FastAPI dependency: one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
