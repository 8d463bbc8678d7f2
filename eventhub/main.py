from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eventhub import forms, permissions, reconciliation, survey
from eventhub.config import settings
from eventhub.db import Base, SessionLocal, engine
from eventhub.logging_config import configure_logging
from eventhub.models import (
    Admin,
    AdminPermission,
    BillingTransaction,
    Panchayath,
    Payment,
    Product,
    Registration,
    Stall,
    StallEnquiry,
    StallEnquiryField,
    SurveyContent,
    SurveyShare,
    Ward,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    if settings.create_tables:
        Base.metadata.create_all(bind=engine)
    logger.info("%s started", settings.app_name)
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _money(value: Optional[Decimal]) -> float:
    return float(Decimal(value or 0).quantize(CENT))


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _paginate_by_id(query, model, limit: int, cursor: Optional[int]) -> tuple[list[Any], Optional[int]]:
    if cursor is not None:
        query = query.filter(model.id > cursor)
    rows = query.order_by(model.id).limit(limit + 1).all()
    next_cursor = None
    if len(rows) > limit:
        next_cursor = rows[limit - 1].id
        rows = rows[:limit]
    return rows, next_cursor


def _list_meta(limit: int, cursor: Optional[int], next_cursor: Optional[int]) -> dict:
    meta = _meta()
    if next_cursor is not None:
        meta["page"] = {"limit": limit, "cursor": str(next_cursor)}
    elif cursor is not None:
        meta["page"] = {"limit": limit, "cursor": str(cursor)}
    else:
        meta["page"] = {"limit": limit, "cursor": None}
    return meta


def _commit(db: Session, conflict_detail: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=conflict_detail)


@app.exception_handler(reconciliation.ReconciliationError)
def handle_reconciliation_error(_: Request, exc: reconciliation.ReconciliationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc), "errors": [str(exc)]})


@app.exception_handler(forms.FormValidationError)
def handle_form_validation_error(_: Request, exc: forms.FormValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": exc.message, "errors": exc.errors})


# Conversions from ORM rows to reconciliation records


def _line_items(raw_items: Optional[list]) -> tuple[reconciliation.LineItem, ...]:
    items = raw_items if isinstance(raw_items, list) else []
    return tuple(
        reconciliation.LineItem(
            price=_to_decimal(item.get("price")),
            quantity=_to_decimal(item.get("quantity")),
            margin=_to_decimal(item.get("event_margin")),
            name=item.get("item_name"),
        )
        for item in items
        if isinstance(item, dict)
    )


def _billing_record(tx: BillingTransaction, stall_name: Optional[str] = None) -> reconciliation.BillingRecord:
    return reconciliation.BillingRecord(
        id=tx.id,
        stall_id=tx.stall_id,
        total=Decimal(tx.total or 0),
        items=_line_items(tx.items),
        stall_name=stall_name,
        created_at=tx.created_at,
    )


def _payment_record(payment: Payment) -> reconciliation.PaymentRecord:
    return reconciliation.PaymentRecord(
        payment_type=payment.payment_type,
        amount_paid=Decimal(payment.amount_paid or 0),
        stall_id=payment.stall_id,
    )


def _stall_record(stall: Stall) -> reconciliation.StallRecord:
    return reconciliation.StallRecord(
        id=stall.id,
        counter_name=stall.counter_name,
        registration_fee=Decimal(stall.registration_fee or 0),
        created_at=stall.created_at,
    )


def _registration_record(registration: Registration) -> reconciliation.RegistrationRecord:
    return reconciliation.RegistrationRecord(
        id=registration.id,
        registration_type=registration.registration_type,
        amount=Decimal(registration.amount or 0),
        name=registration.name,
        created_at=registration.created_at,
    )


def _stall_summary(db: Session, stall_id: int) -> reconciliation.StallSummary:
    transactions = db.query(BillingTransaction).filter(BillingTransaction.stall_id == stall_id).all()
    payments = db.query(Payment).filter(
        Payment.stall_id == stall_id,
        Payment.payment_type == reconciliation.PARTICIPANT,
    ).all()
    return reconciliation.stall_summary(
        stall_id,
        [_billing_record(tx) for tx in transactions],
        [_payment_record(p) for p in payments],
        default_margin=settings.default_margin,
    )


def _stall_summary_dict(summary: reconciliation.StallSummary, stall: Stall) -> dict:
    return {
        "stall_id": summary.stall_id,
        "counter_name": stall.counter_name,
        "participant_name": stall.participant_name,
        "billed_amount": _money(summary.billed_amount),
        "bill_balance": _money(summary.bill_balance),
        "margin_deducted": _money(summary.margin_deducted),
        "already_paid": _money(summary.already_paid),
        "remaining_balance": _money(summary.remaining_balance),
        "fully_paid": summary.fully_paid,
    }


@app.get("/", tags=["root"])
def read_root() -> dict:
    return {"status": "ok"}


@app.get("/health", tags=["health"])
def health_check() -> dict:
    return {"status": "healthy"}


# Stalls


class StallCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'counter_name': 'C-01', 'participant_name': 'Anitha K', 'mobile': '9847000000', 'email': None, 'registration_fee': 500.0, 'is_verified': False}}}
    counter_name: str = Field(min_length=1)
    participant_name: str = Field(min_length=1)
    mobile: Optional[str] = None
    email: Optional[str] = None
    registration_fee: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    is_verified: bool = False


def _stall_dict(stall: Stall) -> dict:
    return {
        "stall_id": stall.id,
        "counter_name": stall.counter_name,
        "participant_name": stall.participant_name,
        "mobile": stall.mobile,
        "email": stall.email,
        "is_verified": stall.is_verified,
        "registration_fee": _money(stall.registration_fee),
        "created_at": stall.created_at.isoformat(),
    }


def _get_stall(db: Session, stall_id: int) -> Stall:
    stall = db.get(Stall, stall_id)
    if not stall:
        raise HTTPException(status_code=404, detail="stall not found")
    return stall


@app.post("/api/v1/stalls", tags=["Stalls"])
def create_stall(payload: StallCreate, db: Session = Depends(get_db)) -> dict:
    stall = Stall(
        counter_name=payload.counter_name.strip(),
        participant_name=payload.participant_name.strip(),
        mobile=payload.mobile,
        email=payload.email,
        registration_fee=payload.registration_fee,
        is_verified=payload.is_verified,
        created_at=_now(),
    )
    db.add(stall)
    _commit(db, "counter name already exists")
    db.refresh(stall)
    return {"data": _stall_dict(stall), "meta": _meta()}


@app.get("/api/v1/stalls/{stall_id}", tags=["Stalls"])
def get_stall(stall_id: int, db: Session = Depends(get_db)) -> dict:
    return {"data": _stall_dict(_get_stall(db, stall_id)), "meta": _meta()}


@app.post("/api/v1/stalls/{stall_id}:verify", tags=["Stalls"])
def verify_stall(stall_id: int, db: Session = Depends(get_db)) -> dict:
    stall = _get_stall(db, stall_id)
    stall.is_verified = True
    db.commit()
    db.refresh(stall)
    return {"data": _stall_dict(stall), "meta": _meta()}


@app.get("/api/v1/stalls", tags=["Stalls"])
def list_stalls(
    is_verified: Optional[bool] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Stall)
    if is_verified is not None:
        query = query.filter(Stall.is_verified == is_verified)
    stalls, next_cursor = _paginate_by_id(query, Stall, limit, cursor)
    data = [_stall_dict(stall) for stall in stalls]
    return {"data": data, "meta": _list_meta(limit, cursor, next_cursor)}


# Products


class ProductCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'item_name': 'Banana chips 250g', 'cost_price': 80.0, 'event_margin': 20.0}}}
    item_name: str = Field(min_length=1)
    cost_price: Decimal = Field(ge=0, decimal_places=2)
    event_margin: Optional[Decimal] = Field(default=None, ge=0, le=100, decimal_places=2)


def _product_dict(product: Product) -> dict:
    margin = Decimal(product.event_margin)
    return {
        "product_id": product.id,
        "stall_id": product.stall_id,
        "item_name": product.item_name,
        "cost_price": _money(product.cost_price),
        "event_margin": float(margin),
        "selling_price": _money(reconciliation.selling_price(Decimal(product.cost_price), margin)),
    }


@app.post("/api/v1/stalls/{stall_id}/products", tags=["Products"])
def create_product(stall_id: int, payload: ProductCreate, db: Session = Depends(get_db)) -> dict:
    _get_stall(db, stall_id)
    product = Product(
        stall_id=stall_id,
        item_name=payload.item_name,
        cost_price=payload.cost_price,
        event_margin=(
            payload.event_margin if payload.event_margin is not None else settings.default_margin
        ),
        created_at=_now(),
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return {"data": _product_dict(product), "meta": _meta()}


@app.get("/api/v1/stalls/{stall_id}/products", tags=["Products"])
def list_products_for_stall(
    stall_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    _get_stall(db, stall_id)
    query = db.query(Product).filter(Product.stall_id == stall_id)
    products, next_cursor = _paginate_by_id(query, Product, limit, cursor)
    data = [_product_dict(product) for product in products]
    return {"data": data, "meta": _list_meta(limit, cursor, next_cursor)}


# Billing transactions


class BillingLineInput(BaseModel):
    product_id: Optional[int] = None
    item_name: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    event_margin: Optional[Decimal] = Field(default=None, ge=0, le=100, decimal_places=2)


class BillingTransactionCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'stall_id': 1, 'receipt_number': None, 'items': [{'product_id': None, 'item_name': 'Banana chips 250g', 'price': 100.0, 'quantity': 2, 'event_margin': 20.0}]}}}
    stall_id: int
    receipt_number: Optional[str] = None
    items: list[BillingLineInput] = Field(min_length=1)


def _billing_dict(tx: BillingTransaction, stall_name: Optional[str] = None) -> dict:
    return {
        "billing_transaction_id": tx.id,
        "stall_id": tx.stall_id,
        "counter_name": stall_name,
        "receipt_number": tx.receipt_number,
        "items": tx.items or [],
        "subtotal": _money(tx.subtotal),
        "total": _money(tx.total),
        "created_at": tx.created_at.isoformat(),
    }


def _resolve_line(db: Session, stall_id: int, line: BillingLineInput) -> dict:
    item_name = line.item_name
    price = line.price
    margin = line.event_margin
    if line.product_id is not None:
        product = db.get(Product, line.product_id)
        if not product or product.stall_id != stall_id:
            raise HTTPException(status_code=400, detail="invalid product_id for stall")
        item_name = item_name or product.item_name
        if margin is None:
            margin = Decimal(product.event_margin)
        if price is None:
            price = reconciliation.selling_price(Decimal(product.cost_price), Decimal(product.event_margin))
    if price is None:
        raise HTTPException(status_code=400, detail="price is required when product_id is not given")
    if margin is None:
        margin = settings.default_margin
    return {
        "product_id": line.product_id,
        "item_name": item_name,
        "price": float(price.quantize(CENT)),
        "quantity": float(line.quantity),
        "event_margin": float(margin),
    }


@app.post("/api/v1/billing-transactions", tags=["Billing"])
def create_billing_transaction(payload: BillingTransactionCreate, db: Session = Depends(get_db)) -> dict:
    stall = _get_stall(db, payload.stall_id)
    items = [_resolve_line(db, stall.id, line) for line in payload.items]
    subtotal = sum(
        (_to_decimal(item["price"]) * _to_decimal(item["quantity"]) for item in items),
        Decimal("0"),
    ).quantize(CENT)
    tx = BillingTransaction(
        stall_id=stall.id,
        receipt_number=payload.receipt_number or f"RCP-{uuid4().hex[:10].upper()}",
        items=items,
        subtotal=subtotal,
        total=subtotal,
        created_at=_now(),
    )
    db.add(tx)
    _commit(db, "receipt number already exists")
    db.refresh(tx)
    logger.info("billing transaction %s recorded for stall %s: %s", tx.receipt_number, stall.id, subtotal)
    return {"data": _billing_dict(tx, stall.counter_name), "meta": _meta()}


@app.get("/api/v1/billing-transactions/{billing_transaction_id}", tags=["Billing"])
def get_billing_transaction(billing_transaction_id: int, db: Session = Depends(get_db)) -> dict:
    tx = db.get(BillingTransaction, billing_transaction_id)
    if not tx:
        raise HTTPException(status_code=404, detail="billing transaction not found")
    stall = db.get(Stall, tx.stall_id)
    return {"data": _billing_dict(tx, stall.counter_name if stall else None), "meta": _meta()}


@app.get("/api/v1/billing-transactions", tags=["Billing"])
def list_billing_transactions(
    stall_id: Optional[int] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(BillingTransaction)
    if stall_id is not None:
        query = query.filter(BillingTransaction.stall_id == stall_id)
    rows, next_cursor = _paginate_by_id(query, BillingTransaction, limit, cursor)
    names = {s.id: s.counter_name for s in db.query(Stall).filter(Stall.id.in_({r.stall_id for r in rows}))}
    data = [_billing_dict(row, names.get(row.stall_id)) for row in rows]
    return {"data": data, "meta": _list_meta(limit, cursor, next_cursor)}


# Registrations


RegistrationType = Literal["stall_counter", "employment_booking", "employment_registration"]


class RegistrationCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'registration_type': 'employment_registration', 'name': 'Rahul M', 'mobile': '9847000001', 'category': 'IT', 'amount': 100.0, 'receipt_number': 'REG-0001'}}}
    registration_type: RegistrationType
    name: str = Field(min_length=1)
    mobile: Optional[str] = None
    category: Optional[str] = None
    amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    receipt_number: Optional[str] = None


def _registration_dict(registration: Registration) -> dict:
    return {
        "registration_id": registration.id,
        "registration_type": registration.registration_type,
        "name": registration.name,
        "mobile": registration.mobile,
        "category": registration.category,
        "amount": _money(registration.amount),
        "receipt_number": registration.receipt_number,
        "created_at": registration.created_at.isoformat(),
    }


@app.post("/api/v1/registrations", tags=["Registrations"])
def create_registration(payload: RegistrationCreate, db: Session = Depends(get_db)) -> dict:
    registration = Registration(
        registration_type=payload.registration_type,
        name=payload.name,
        mobile=payload.mobile,
        category=payload.category,
        amount=payload.amount,
        receipt_number=payload.receipt_number,
        created_at=_now(),
    )
    db.add(registration)
    _commit(db, "receipt number already exists")
    db.refresh(registration)
    return {"data": _registration_dict(registration), "meta": _meta()}


@app.get("/api/v1/registrations", tags=["Registrations"])
def list_registrations(
    registration_type: Optional[RegistrationType] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Registration)
    if registration_type is not None:
        query = query.filter(Registration.registration_type == registration_type)
    rows, next_cursor = _paginate_by_id(query, Registration, limit, cursor)
    data = [_registration_dict(row) for row in rows]
    return {"data": data, "meta": _list_meta(limit, cursor, next_cursor)}


# Payments


PaymentType = Literal["participant", "other"]


class PaymentCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'payment_type': 'participant', 'stall_id': 1, 'amount_paid': 50.0, 'narration': None}}}
    payment_type: PaymentType
    stall_id: Optional[int] = None
    amount_paid: Decimal = Field(gt=0, decimal_places=2)
    narration: Optional[str] = None


def _payment_dict(payment: Payment) -> dict:
    return {
        "payment_id": payment.id,
        "payment_type": payment.payment_type,
        "stall_id": payment.stall_id,
        "total_billed": _money(payment.total_billed),
        "margin_deducted": _money(payment.margin_deducted),
        "amount_paid": _money(payment.amount_paid),
        "narration": payment.narration,
        "created_at": payment.created_at.isoformat(),
    }


@app.post("/api/v1/payments", tags=["Payments"])
def create_payment(payload: PaymentCreate, db: Session = Depends(get_db)) -> dict:
    if payload.payment_type == reconciliation.PARTICIPANT:
        if payload.stall_id is None:
            raise HTTPException(status_code=400, detail="stall_id is required for participant payments")
        stall = _get_stall(db, payload.stall_id)
        summary = _stall_summary(db, stall.id)
        try:
            reconciliation.validate_participant_payment(summary, payload.amount_paid)
        except reconciliation.ReconciliationError as exc:
            logger.warning("payment to stall %s rejected: %s", stall.id, exc)
            raise
        payment = Payment(
            payment_type=reconciliation.PARTICIPANT,
            stall_id=stall.id,
            total_billed=summary.billed_amount.quantize(CENT),
            margin_deducted=summary.margin_deducted.quantize(CENT),
            amount_paid=payload.amount_paid,
            narration=payload.narration or f"Payment to {stall.counter_name}",
            created_at=_now(),
        )
    else:
        if not (payload.narration or "").strip():
            raise HTTPException(status_code=400, detail="narration is required for other payments")
        payment = Payment(
            payment_type=reconciliation.OTHER,
            stall_id=None,
            amount_paid=payload.amount_paid,
            narration=payload.narration.strip(),
            created_at=_now(),
        )
    db.add(payment)
    _commit(db, "payment violates a ledger constraint")
    db.refresh(payment)
    logger.info("%s payment %s recorded: %s", payment.payment_type, payment.id, payment.amount_paid)
    return {"data": _payment_dict(payment), "meta": _meta()}


@app.get("/api/v1/payments", tags=["Payments"])
def list_payments(
    payment_type: Optional[PaymentType] = Query(default=None),
    stall_id: Optional[int] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Payment)
    if payment_type is not None:
        query = query.filter(Payment.payment_type == payment_type)
    if stall_id is not None:
        query = query.filter(Payment.stall_id == stall_id)
    rows, next_cursor = _paginate_by_id(query, Payment, limit, cursor)
    data = [_payment_dict(row) for row in rows]
    return {"data": data, "meta": _list_meta(limit, cursor, next_cursor)}


# Accounts


@app.get("/api/v1/accounts/stalls/{stall_id}", tags=["Accounts"])
def get_stall_account(stall_id: int, db: Session = Depends(get_db)) -> dict:
    stall = _get_stall(db, stall_id)
    summary = _stall_summary(db, stall.id)
    return {"data": _stall_summary_dict(summary, stall), "meta": _meta()}


@app.get("/api/v1/accounts/summary", tags=["Accounts"])
def get_accounts_summary(db: Session = Depends(get_db)) -> dict:
    stalls = db.query(Stall).filter(Stall.is_verified.is_(True)).all()
    summary = reconciliation.ledger_summary(
        [_stall_record(s) for s in stalls],
        [_billing_record(tx) for tx in db.query(BillingTransaction).all()],
        [_payment_record(p) for p in db.query(Payment).all()],
        [_registration_record(r) for r in db.query(Registration).all()],
    )
    warnings = []
    if summary.stall_payments_total > 0:
        warnings.append("total_paid_excludes_stall_payments")
    return {
        "data": {
            "total_billing_collected": _money(summary.total_billing_collected),
            "total_registration_collected": _money(summary.total_registration_collected),
            "stall_booking_fees": _money(summary.stall_booking_fees),
            "total_collected": _money(summary.total_collected),
            "total_paid": _money(summary.total_paid),
            "cash_balance": _money(summary.cash_balance),
            "stall_payments_total": _money(summary.stall_payments_total),
            "other_payments_total": _money(summary.other_payments_total),
            "employment_booking_total": _money(summary.employment_booking_total),
            "employment_registration_total": _money(summary.employment_registration_total),
        },
        "meta": _meta(warnings=warnings),
    }


@app.get("/api/v1/accounts/collections", tags=["Accounts"])
def list_collections(db: Session = Depends(get_db)) -> dict:
    stalls = db.query(Stall).filter(Stall.is_verified.is_(True)).all()
    names = {s.id: s.counter_name for s in db.query(Stall).all()}
    entries = reconciliation.collection_entries(
        [_stall_record(s) for s in stalls],
        [_billing_record(tx, names.get(tx.stall_id)) for tx in db.query(BillingTransaction).all()],
        [_registration_record(r) for r in db.query(Registration).all()],
    )
    data = [
        {
            "type": entry.kind,
            "source_id": entry.source_id,
            "category": entry.category,
            "description": entry.description,
            "amount": _money(entry.amount),
            "date": entry.date.isoformat() if entry.date else None,
        }
        for entry in entries
    ]
    return {"data": data, "meta": _meta()}


# Panchayaths and wards


class PanchayathCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'name': 'Kodiyathur'}}}
    name: str = Field(min_length=1)


class WardCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'ward_number': '7', 'ward_name': 'Cheruvadi'}}}
    ward_number: str = Field(min_length=1)
    ward_name: Optional[str] = None


def _ward_dict(ward: Ward) -> dict:
    return {
        "ward_id": ward.id,
        "panchayath_id": ward.panchayath_id,
        "ward_number": ward.ward_number,
        "ward_name": ward.ward_name,
    }


def _get_panchayath(db: Session, panchayath_id: int) -> Panchayath:
    panchayath = db.get(Panchayath, panchayath_id)
    if not panchayath:
        raise HTTPException(status_code=404, detail="panchayath not found")
    return panchayath


def _get_ward_in(db: Session, panchayath_id: int, ward_id: int) -> Ward:
    ward = db.get(Ward, ward_id)
    if not ward or ward.panchayath_id != panchayath_id:
        raise HTTPException(status_code=400, detail="ward does not belong to panchayath")
    return ward


@app.post("/api/v1/panchayaths", tags=["Panchayaths"])
def create_panchayath(payload: PanchayathCreate, db: Session = Depends(get_db)) -> dict:
    panchayath = Panchayath(name=payload.name.strip(), created_at=_now())
    db.add(panchayath)
    _commit(db, "panchayath already exists")
    db.refresh(panchayath)
    return {"data": {"panchayath_id": panchayath.id, "name": panchayath.name}, "meta": _meta()}


@app.get("/api/v1/panchayaths", tags=["Panchayaths"])
def list_panchayaths(db: Session = Depends(get_db)) -> dict:
    rows = db.query(Panchayath).order_by(Panchayath.name).all()
    data = [{"panchayath_id": row.id, "name": row.name} for row in rows]
    return {"data": data, "meta": _meta()}


@app.delete("/api/v1/panchayaths/{panchayath_id}", tags=["Panchayaths"])
def delete_panchayath(panchayath_id: int, db: Session = Depends(get_db)) -> dict:
    panchayath = _get_panchayath(db, panchayath_id)
    ward_ids = [ward.id for ward in db.query(Ward).filter(Ward.panchayath_id == panchayath.id)]
    referenced = db.query(StallEnquiry).filter(
        (StallEnquiry.panchayath_id == panchayath.id) | StallEnquiry.ward_id.in_(ward_ids)
    ).count()
    if referenced:
        raise HTTPException(status_code=409, detail="panchayath is referenced by enquiries")
    db.query(SurveyShare).filter(SurveyShare.panchayath_id == panchayath.id).delete()
    db.query(Ward).filter(Ward.panchayath_id == panchayath.id).delete()
    db.delete(panchayath)
    _commit(db, "panchayath is referenced by enquiries")
    return {"data": {"panchayath_id": panchayath_id, "deleted": True}, "meta": _meta()}


@app.post("/api/v1/panchayaths/{panchayath_id}/wards", tags=["Wards"])
def create_ward(panchayath_id: int, payload: WardCreate, db: Session = Depends(get_db)) -> dict:
    _get_panchayath(db, panchayath_id)
    ward = Ward(
        panchayath_id=panchayath_id,
        ward_number=payload.ward_number.strip(),
        ward_name=payload.ward_name or None,
        created_at=_now(),
    )
    db.add(ward)
    _commit(db, "ward number already exists in panchayath")
    db.refresh(ward)
    return {"data": _ward_dict(ward), "meta": _meta()}


@app.get("/api/v1/panchayaths/{panchayath_id}/wards", tags=["Wards"])
def list_wards(panchayath_id: int, db: Session = Depends(get_db)) -> dict:
    _get_panchayath(db, panchayath_id)
    rows = db.query(Ward).filter(Ward.panchayath_id == panchayath_id).order_by(Ward.ward_number).all()
    return {"data": [_ward_dict(row) for row in rows], "meta": _meta()}


@app.delete("/api/v1/wards/{ward_id}", tags=["Wards"])
def delete_ward(ward_id: int, db: Session = Depends(get_db)) -> dict:
    ward = db.get(Ward, ward_id)
    if not ward:
        raise HTTPException(status_code=404, detail="ward not found")
    if db.query(StallEnquiry).filter(StallEnquiry.ward_id == ward.id).count():
        raise HTTPException(status_code=409, detail="ward is referenced by enquiries")
    db.query(SurveyShare).filter(SurveyShare.ward_id == ward.id).delete()
    db.delete(ward)
    _commit(db, "ward is referenced by enquiries")
    return {"data": {"ward_id": ward_id, "deleted": True}, "meta": _meta()}


# Survey content and shares


SurveyContentType = Literal["video", "poster", "writeup"]


class SurveyContentCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'content_type': 'poster', 'title': 'Fair poster', 'content_url': 'https://example.org/poster.jpg', 'content_text': None}}}
    content_type: SurveyContentType
    title: str = Field(min_length=1)
    content_url: Optional[str] = None
    content_text: Optional[str] = None


class SurveyContentUpdate(BaseModel):
    is_active: bool


def _content_dict(content: SurveyContent) -> dict:
    return {
        "content_id": content.id,
        "content_type": content.content_type,
        "title": content.title,
        "content_url": content.content_url,
        "content_text": content.content_text,
        "display_order": content.display_order,
        "is_active": content.is_active,
    }


@app.post("/api/v1/survey-content", tags=["Survey"])
def create_survey_content(payload: SurveyContentCreate, db: Session = Depends(get_db)) -> dict:
    orders = [
        row.display_order
        for row in db.query(SurveyContent).filter(SurveyContent.content_type == payload.content_type)
    ]
    content = SurveyContent(
        content_type=payload.content_type,
        title=payload.title,
        content_url=payload.content_url or None,
        content_text=payload.content_text or None,
        display_order=survey.next_display_order(orders),
        is_active=True,
        created_at=_now(),
    )
    db.add(content)
    db.commit()
    db.refresh(content)
    return {"data": _content_dict(content), "meta": _meta()}


@app.get("/api/v1/survey-content", tags=["Survey"])
def list_survey_content(
    content_type: SurveyContentType = Query(...),
    active_only: bool = Query(default=True),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(SurveyContent).filter(SurveyContent.content_type == content_type)
    if active_only:
        query = query.filter(SurveyContent.is_active.is_(True))
    rows = query.order_by(SurveyContent.display_order, SurveyContent.id).all()
    return {"data": [_content_dict(row) for row in rows], "meta": _meta()}


@app.patch("/api/v1/survey-content/{content_id}", tags=["Survey"])
def update_survey_content(
    content_id: int, payload: SurveyContentUpdate, db: Session = Depends(get_db)
) -> dict:
    content = db.get(SurveyContent, content_id)
    if not content:
        raise HTTPException(status_code=404, detail="survey content not found")
    content.is_active = payload.is_active
    db.commit()
    db.refresh(content)
    return {"data": _content_dict(content), "meta": _meta()}


@app.delete("/api/v1/survey-content/{content_id}", tags=["Survey"])
def delete_survey_content(content_id: int, db: Session = Depends(get_db)) -> dict:
    content = db.get(SurveyContent, content_id)
    if not content:
        raise HTTPException(status_code=404, detail="survey content not found")
    db.delete(content)
    db.commit()
    return {"data": {"content_id": content_id, "deleted": True}, "meta": _meta()}


class SurveyShareCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'name': 'Suresh', 'mobile': '9847000002', 'panchayath_id': 1, 'ward_id': 3}}}
    name: str
    mobile: str
    panchayath_id: int
    ward_id: int


@app.post("/api/v1/survey-shares", tags=["Survey"])
def create_survey_share(payload: SurveyShareCreate, db: Session = Depends(get_db)) -> dict:
    if not payload.name.strip() or not payload.mobile.strip():
        raise HTTPException(status_code=400, detail="please fill in all fields to generate the link")
    panchayath = _get_panchayath(db, payload.panchayath_id)
    ward = _get_ward_in(db, panchayath.id, payload.ward_id)
    share = SurveyShare(
        name=payload.name.strip(),
        mobile=payload.mobile.strip(),
        panchayath_id=panchayath.id,
        ward_id=ward.id,
        shared_at=_now(),
        view_count=0,
    )
    db.add(share)
    db.commit()
    db.refresh(share)
    view_url = survey.build_view_url(settings.public_base_url, share.name, panchayath.name, ward.ward_number)
    return {
        "data": {
            "share_id": share.id,
            "view_url": view_url,
            "whatsapp_url": survey.build_whatsapp_link(
                share.name, panchayath.name, ward.ward_number, view_url
            ),
        },
        "meta": _meta(),
    }


@app.get("/api/v1/survey-shares/results", tags=["Survey"])
def get_survey_results(panchayath_id: int = Query(...), db: Session = Depends(get_db)) -> dict:
    _get_panchayath(db, panchayath_id)
    ward_ids = [
        row.ward_id
        for row in db.query(SurveyShare).filter(SurveyShare.panchayath_id == panchayath_id)
    ]
    stats = survey.share_counts(ward_ids)
    counts = {item["ward_id"]: item["count"] for item in stats["wards"]}
    wards = db.query(Ward).filter(Ward.panchayath_id == panchayath_id).order_by(Ward.ward_number).all()
    return {
        "data": {
            "panchayath_id": panchayath_id,
            "total_shares": stats["total_shares"],
            "wards_with_shares": stats["wards_with_shares"],
            "wards": [dict(_ward_dict(ward), share_count=counts.get(ward.id, 0)) for ward in wards],
        },
        "meta": _meta(),
    }


# Stall enquiry


class EnquiryFieldCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'field_label': 'Is it home made?', 'field_type': 'radio', 'options': ['Yes', 'No'], 'is_required': True, 'display_order': 2, 'show_conditional_on': None, 'conditional_value': None}}}
    field_label: str = Field(min_length=1)
    field_type: str = "text"
    options: Optional[list[str]] = None
    is_required: bool = True
    display_order: int = 0
    show_conditional_on: Optional[int] = None
    conditional_value: Optional[str] = None


def _enquiry_field_dict(row: StallEnquiryField) -> dict:
    return {
        "field_id": row.id,
        "field_label": row.field_label,
        "field_type": row.field_type,
        "options": row.options,
        "is_required": row.is_required,
        "display_order": row.display_order,
        "is_active": row.is_active,
        "show_conditional_on": row.show_conditional_on,
        "conditional_value": row.conditional_value,
    }


@app.post("/api/v1/stall-enquiry-fields", tags=["Stall Enquiry"])
def create_enquiry_field(payload: EnquiryFieldCreate, db: Session = Depends(get_db)) -> dict:
    forms.parse_field_kind(payload.field_type, payload.options)
    if payload.show_conditional_on is not None and not db.get(StallEnquiryField, payload.show_conditional_on):
        raise HTTPException(status_code=400, detail="show_conditional_on refers to an unknown field")
    row = StallEnquiryField(
        field_label=payload.field_label,
        field_type=payload.field_type,
        options=payload.options,
        is_required=payload.is_required,
        display_order=payload.display_order,
        is_active=True,
        show_conditional_on=(
            str(payload.show_conditional_on) if payload.show_conditional_on is not None else None
        ),
        conditional_value=payload.conditional_value,
        created_at=_now(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return {"data": _enquiry_field_dict(row), "meta": _meta()}


def _active_enquiry_fields(db: Session) -> list[StallEnquiryField]:
    return (
        db.query(StallEnquiryField)
        .filter(StallEnquiryField.is_active.is_(True))
        .order_by(StallEnquiryField.display_order, StallEnquiryField.id)
        .all()
    )


@app.get("/api/v1/stall-enquiry-fields", tags=["Stall Enquiry"])
def list_enquiry_fields(db: Session = Depends(get_db)) -> dict:
    return {"data": [_enquiry_field_dict(row) for row in _active_enquiry_fields(db)], "meta": _meta()}


@app.delete("/api/v1/stall-enquiry-fields/{field_id}", tags=["Stall Enquiry"])
def delete_enquiry_field(field_id: int, db: Session = Depends(get_db)) -> dict:
    row = db.get(StallEnquiryField, field_id)
    if not row:
        raise HTTPException(status_code=404, detail="enquiry field not found")
    db.delete(row)
    db.commit()
    return {"data": {"field_id": field_id, "deleted": True}, "meta": _meta()}


EnquiryStatus = Literal["pending", "contacted", "approved", "rejected"]


class StallEnquiryCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'name': 'Anitha K', 'mobile': '9847000000', 'panchayath_id': 1, 'ward_id': 3, 'responses': {'1': 'Pickles', '2': 'Yes'}}}}
    name: str
    mobile: str
    panchayath_id: Optional[int] = None
    ward_id: Optional[int] = None
    responses: dict[str, Any] = Field(default_factory=dict)


class StallEnquiryStatusUpdate(BaseModel):
    status: EnquiryStatus


def _enquiry_dict(enquiry: StallEnquiry) -> dict:
    return {
        "enquiry_id": enquiry.id,
        "name": enquiry.name,
        "mobile": enquiry.mobile,
        "panchayath_id": enquiry.panchayath_id,
        "ward_id": enquiry.ward_id,
        "responses": enquiry.responses or {},
        "status": enquiry.status,
        "created_at": enquiry.created_at.isoformat(),
    }


@app.post("/api/v1/stall-enquiries", tags=["Stall Enquiry"])
def submit_stall_enquiry(payload: StallEnquiryCreate, db: Session = Depends(get_db)) -> dict:
    fields = [forms.field_from_row(row) for row in _active_enquiry_fields(db)]
    errors = forms.validate_contact(payload.name, payload.mobile, payload.panchayath_id, payload.ward_id)
    errors.extend(forms.validate_responses(fields, payload.responses))
    if errors:
        raise forms.FormValidationError("enquiry is incomplete", errors)
    panchayath = _get_panchayath(db, payload.panchayath_id)
    ward = _get_ward_in(db, panchayath.id, payload.ward_id)
    enquiry = StallEnquiry(
        name=payload.name.strip(),
        mobile=payload.mobile.strip(),
        panchayath_id=panchayath.id,
        ward_id=ward.id,
        responses=forms.visible_responses(fields, payload.responses),
        status="pending",
        created_at=_now(),
        updated_at=_now(),
    )
    db.add(enquiry)
    db.commit()
    db.refresh(enquiry)
    logger.info("stall enquiry %s submitted", enquiry.id)
    return {"data": _enquiry_dict(enquiry), "meta": _meta()}


@app.get("/api/v1/stall-enquiries", tags=["Stall Enquiry"])
def list_stall_enquiries(
    status: Optional[EnquiryStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(StallEnquiry)
    if status is not None:
        query = query.filter(StallEnquiry.status == status)
    rows, next_cursor = _paginate_by_id(query, StallEnquiry, limit, cursor)
    data = [_enquiry_dict(row) for row in rows]
    return {"data": data, "meta": _list_meta(limit, cursor, next_cursor)}


@app.patch("/api/v1/stall-enquiries/{enquiry_id}", tags=["Stall Enquiry"])
def update_stall_enquiry_status(
    enquiry_id: int, payload: StallEnquiryStatusUpdate, db: Session = Depends(get_db)
) -> dict:
    enquiry = db.get(StallEnquiry, enquiry_id)
    if not enquiry:
        raise HTTPException(status_code=404, detail="stall enquiry not found")
    enquiry.status = payload.status
    enquiry.updated_at = _now()
    db.commit()
    db.refresh(enquiry)
    return {"data": _enquiry_dict(enquiry), "meta": _meta()}


# Admins and permissions


class AdminCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'username': 'billing_desk', 'role': 'admin'}}}
    username: str = Field(min_length=1)
    role: Literal["super_admin", "admin"] = "admin"


class PermissionInput(BaseModel):
    module: str
    can_read: bool = False
    can_create: bool = False
    can_update: bool = False
    can_delete: bool = False


class PermissionsReplace(BaseModel):
    model_config = {"json_schema_extra": {"example": {'permissions': [{'module': 'billing', 'can_read': True, 'can_create': True, 'can_update': False, 'can_delete': False}]}}}
    permissions: list[PermissionInput]


def _admin_dict(admin: Admin) -> dict:
    return {"admin_id": admin.id, "username": admin.username, "role": admin.role}


def _permission_dict(perm: permissions.ModulePermission) -> dict:
    return {
        "module": perm.module,
        "can_read": perm.can_read,
        "can_create": perm.can_create,
        "can_update": perm.can_update,
        "can_delete": perm.can_delete,
    }


def _admin_module_permissions(db: Session, admin_id: int) -> list[permissions.ModulePermission]:
    rows = db.query(AdminPermission).filter(AdminPermission.admin_id == admin_id).all()
    return permissions.build_matrix(rows)


def _current_admin(
    x_admin_id: Optional[int] = Header(default=None),
    db: Session = Depends(get_db),
) -> Admin:
    if x_admin_id is None:
        raise HTTPException(status_code=401, detail="admin authentication required")
    admin = db.get(Admin, x_admin_id)
    if not admin:
        raise HTTPException(status_code=401, detail="admin authentication required")
    return admin


def _require_super_admin(admin: Admin = Depends(_current_admin)) -> Admin:
    if admin.role != permissions.SUPER_ADMIN:
        raise HTTPException(status_code=403, detail="super admin access required")
    return admin


@app.post("/api/v1/admins", tags=["Admins"])
def create_admin(
    payload: AdminCreate,
    x_admin_id: Optional[int] = Header(default=None),
    db: Session = Depends(get_db),
) -> dict:
    # the first admin bootstraps the system and must be a super admin
    if db.query(Admin).count() == 0:
        if payload.role != permissions.SUPER_ADMIN:
            raise HTTPException(status_code=400, detail="first admin must be a super admin")
    else:
        _require_super_admin(_current_admin(x_admin_id, db))
    admin = Admin(username=payload.username.strip(), role=payload.role, created_at=_now())
    db.add(admin)
    _commit(db, "username already exists")
    db.refresh(admin)
    logger.info("admin %s created with role %s", admin.username, admin.role)
    return {"data": _admin_dict(admin), "meta": _meta()}


@app.get("/api/v1/admins", tags=["Admins"])
def list_admins(
    role: Optional[str] = Query(default="admin"),
    _: Admin = Depends(_require_super_admin),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Admin)
    if role is not None:
        query = query.filter(Admin.role == role)
    rows = query.order_by(Admin.username).all()
    return {"data": [_admin_dict(row) for row in rows], "meta": _meta()}


@app.get("/api/v1/admins/{admin_id}/permissions", tags=["Admins"])
def get_admin_permissions(
    admin_id: int,
    _: Admin = Depends(_require_super_admin),
    db: Session = Depends(get_db),
) -> dict:
    if not db.get(Admin, admin_id):
        raise HTTPException(status_code=404, detail="admin not found")
    matrix = _admin_module_permissions(db, admin_id)
    return {
        "data": {"admin_id": admin_id, "permissions": [_permission_dict(p) for p in matrix]},
        "meta": _meta(),
    }


@app.put("/api/v1/admins/{admin_id}/permissions", tags=["Admins"])
def replace_admin_permissions(
    admin_id: int,
    payload: PermissionsReplace,
    _: Admin = Depends(_require_super_admin),
    db: Session = Depends(get_db),
) -> dict:
    if not db.get(Admin, admin_id):
        raise HTTPException(status_code=404, detail="admin not found")
    unknown = sorted({p.module for p in payload.permissions} - set(permissions.MODULES))
    if unknown:
        raise HTTPException(status_code=400, detail=f"unknown modules: {', '.join(unknown)}")
    matrix = permissions.build_matrix(payload.permissions)
    db.query(AdminPermission).filter(AdminPermission.admin_id == admin_id).delete()
    for perm in permissions.rows_to_persist(matrix):
        db.add(
            AdminPermission(
                admin_id=admin_id,
                module=perm.module,
                can_read=perm.can_read,
                can_create=perm.can_create,
                can_update=perm.can_update,
                can_delete=perm.can_delete,
            )
        )
    db.commit()
    return {
        "data": {"admin_id": admin_id, "permissions": [_permission_dict(p) for p in matrix]},
        "meta": _meta(),
    }


@app.get("/api/v1/admins/me/access", tags=["Admins"])
def check_my_access(
    module: str = Query(...),
    action: Literal["read", "create", "update", "delete"] = Query(default="read"),
    admin: Admin = Depends(_current_admin),
    db: Session = Depends(get_db),
) -> dict:
    if module not in permissions.MODULES:
        raise HTTPException(status_code=400, detail="unknown module")
    allowed = permissions.can(admin.role, _admin_module_permissions(db, admin.id), module, action)
    return {
        "data": {"admin_id": admin.id, "module": module, "action": action, "allowed": allowed},
        "meta": _meta(),
    }
