# api_app.py
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

import quote_store as store
from db import SessionLocal, get_db, init_db
from logging_config import setup_logging
from quote_pdf import render_quote_pdf

logger = logging.getLogger(__name__)

# ----------------------------
# Config
# ----------------------------
# Optional API key protection for everything except /health
API_KEY = os.environ.get("API_KEY", "")

ALLOWED_ORIGINS = [o.strip() for o in os.environ.get("ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

SEED_DEFAULT_PRICING = os.environ.get("SEED_DEFAULT_PRICING", "1").lower() in ("1", "true", "yes")

_STATUS_BY_KIND = {
    store.VALIDATION: 422,
    store.NOT_FOUND: 404,
    store.CONFLICT: 409,
    store.PERSISTENCE: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    if SEED_DEFAULT_PRICING:
        db = SessionLocal()
        try:
            seeded = store.seed_default_pricing_set(db)
            if "error" in seeded:
                logger.error("Could not seed default pricing set: %s", seeded["error"])
        finally:
            db.close()
    yield


# ----------------------------
# App
# ----------------------------
app = FastAPI(title="Signage Quoter API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------------
# Helpers
# ----------------------------
def _require_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
    if API_KEY:
        if not x_api_key or x_api_key != API_KEY:
            raise HTTPException(status_code=401, detail="Unauthorized")


def _respond(result: Dict[str, Any], status_code: int = 200):
    """Map a service result dict onto an HTTP response."""
    if "error" not in result:
        return JSONResponse(status_code=status_code, content=result)
    body = {"error": result["error"]}
    if result.get("errors"):
        body["errors"] = result["errors"]
    return JSONResponse(status_code=_STATUS_BY_KIND.get(result.get("kind"), 500), content=body)


def _not_found(what: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": f"{what} not found"})


# ----------------------------
# Request models
# ----------------------------
class QuoteCreateRequest(BaseModel):
    pricing_set_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    notes_internal: Optional[str] = None


class QuoteUpdateRequest(BaseModel):
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    notes_internal: Optional[str] = None


class QuoteStatusRequest(BaseModel):
    status: str


class PricingSetCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    rate_card: Optional[Dict[str, Any]] = None


class PricingSetUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    effective_from: Optional[datetime] = None
    rate_card: Optional[Dict[str, Any]] = None


# ----------------------------
# Routes
# ----------------------------
@app.get("/health")
def health():
    return {"ok": True}


api = APIRouter(dependencies=[Depends(_require_api_key)])


# ---- Pricing sets ----
@api.get("/pricing-sets")
def list_pricing_sets(db: Session = Depends(get_db)):
    return store.list_pricing_sets(db)


@api.post("/pricing-sets")
def create_pricing_set(req: PricingSetCreateRequest, db: Session = Depends(get_db)):
    return _respond(store.create_pricing_set(db, req.name, req.rate_card), status_code=201)


@api.get("/pricing-sets/{pricing_set_id}")
def get_pricing_set(pricing_set_id: str, db: Session = Depends(get_db)):
    ps = store.get_pricing_set(db, pricing_set_id)
    return ps if ps is not None else _not_found("Pricing set")


@api.patch("/pricing-sets/{pricing_set_id}")
def update_pricing_set(pricing_set_id: str, req: PricingSetUpdateRequest, db: Session = Depends(get_db)):
    return _respond(
        store.update_pricing_set(
            db,
            pricing_set_id,
            name=req.name,
            effective_from=req.effective_from,
            rate_card=req.rate_card,
        )
    )


@api.delete("/pricing-sets/{pricing_set_id}")
def delete_pricing_set(pricing_set_id: str, db: Session = Depends(get_db)):
    return _respond(store.delete_pricing_set(db, pricing_set_id))


@api.get("/pricing-sets/{pricing_set_id}/completeness")
def pricing_set_completeness(pricing_set_id: str, db: Session = Depends(get_db)):
    if store.get_pricing_set(db, pricing_set_id) is None:
        return _not_found("Pricing set")
    return store.check_pricing_set_completeness(db, pricing_set_id)


@api.post("/pricing-sets/{pricing_set_id}/activate")
def activate_pricing_set(pricing_set_id: str, db: Session = Depends(get_db)):
    return _respond(store.activate_pricing_set(db, pricing_set_id))


@api.post("/pricing-sets/{pricing_set_id}/recalculate")
def recalculate(pricing_set_id: str, payload: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    """
    Live preview: price a panel + letters line without saving it.
    Always 200; the body's ``ok`` flag says whether it priced.
    """
    return store.recalculate(db, pricing_set_id, payload)


# ---- Quotes ----
@api.get("/quotes")
def list_quotes(status: Optional[str] = None, search: Optional[str] = None, db: Session = Depends(get_db)):
    return store.list_quotes(db, status=status, search=search)


@api.post("/quotes")
def create_quote(req: QuoteCreateRequest, db: Session = Depends(get_db)):
    return _respond(store.create_quote(db, **req.model_dump()), status_code=201)


@api.get("/quotes/{quote_id}")
def get_quote(quote_id: str, db: Session = Depends(get_db)):
    view = store.get_quote_with_items(db, quote_id)
    return view if view is not None else _not_found("Quote")


@api.patch("/quotes/{quote_id}")
def update_quote(quote_id: str, req: QuoteUpdateRequest, db: Session = Depends(get_db)):
    return _respond(store.update_quote(db, quote_id, req.model_dump(exclude_unset=True)))


@api.delete("/quotes/{quote_id}")
def delete_quote(quote_id: str, db: Session = Depends(get_db)):
    return _respond(store.delete_quote(db, quote_id))


@api.post("/quotes/{quote_id}/status")
def update_quote_status(quote_id: str, req: QuoteStatusRequest, db: Session = Depends(get_db)):
    return _respond(store.update_quote_status(db, quote_id, req.status))


@api.post("/quotes/{quote_id}/duplicate")
def duplicate_quote(quote_id: str, db: Session = Depends(get_db)):
    return _respond(store.duplicate_quote(db, quote_id), status_code=201)


@api.get("/quotes/{quote_id}/pdf")
def quote_pdf(quote_id: str, db: Session = Depends(get_db)):
    view = store.get_quote_with_items(db, quote_id)
    if view is None:
        return _not_found("Quote")
    filename = f"{view['quote']['quote_number']}.pdf"
    return Response(
        content=render_quote_pdf(view),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---- Quote items ----
@api.post("/quotes/{quote_id}/items")
def add_quote_item(quote_id: str, payload: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    return _respond(store.add_quote_item(db, quote_id, payload), status_code=201)


@api.put("/quotes/{quote_id}/items/{item_id}")
def update_quote_item(quote_id: str, item_id: str, payload: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    return _respond(store.update_quote_item(db, quote_id, item_id, payload))


@api.delete("/quotes/{quote_id}/items/{item_id}")
def delete_quote_item(quote_id: str, item_id: str, db: Session = Depends(get_db)):
    return _respond(store.delete_quote_item(db, quote_id, item_id))


@api.post("/quotes/{quote_id}/items/{item_id}/duplicate")
def duplicate_quote_item(quote_id: str, item_id: str, db: Session = Depends(get_db)):
    return _respond(store.duplicate_quote_item(db, quote_id, item_id), status_code=201)


app.include_router(api)
