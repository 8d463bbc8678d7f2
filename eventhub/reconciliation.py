"""Stall billing and payment reconciliation.

Everything here is a pure function over records already loaded from the
database. Callers convert ORM rows into the frozen dataclasses below and
recompute the summaries on every read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")
DEFAULT_MARGIN = Decimal("20")

PARTICIPANT = "participant"
OTHER = "other"

STALL_COUNTER = "stall_counter"
EMPLOYMENT_BOOKING = "employment_booking"
EMPLOYMENT_REGISTRATION = "employment_registration"


class ReconciliationError(Exception):
    """Raised when a payment would break a reconciliation invariant."""


class InvalidPaymentAmount(ReconciliationError):
    """Raised when a payment amount is zero or negative."""


class PaymentExceedsBalance(ReconciliationError):
    """Raised when a participant payment is larger than the remaining balance."""

    def __init__(self, amount: Decimal, remaining_balance: Decimal) -> None:
        self.amount = amount
        self.remaining_balance = remaining_balance
        super().__init__(
            f"Amount {amount} exceeds remaining balance {remaining_balance}"
        )


@dataclass(frozen=True)
class LineItem:
    price: Optional[Decimal] = None
    quantity: Optional[Decimal] = None
    margin: Optional[Decimal] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class BillingRecord:
    stall_id: int
    total: Decimal
    items: tuple[LineItem, ...] = ()
    id: Optional[int] = None
    stall_name: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class PaymentRecord:
    payment_type: str
    amount_paid: Decimal
    stall_id: Optional[int] = None


@dataclass(frozen=True)
class StallRecord:
    id: int
    counter_name: str
    registration_fee: Decimal = ZERO
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class RegistrationRecord:
    registration_type: str
    amount: Decimal
    id: Optional[int] = None
    name: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class StallSummary:
    stall_id: int
    billed_amount: Decimal
    bill_balance: Decimal
    already_paid: Decimal
    remaining_balance: Decimal

    @property
    def margin_deducted(self) -> Decimal:
        return self.billed_amount - self.bill_balance

    @property
    def fully_paid(self) -> bool:
        return self.remaining_balance == ZERO


@dataclass(frozen=True)
class LedgerSummary:
    total_billing_collected: Decimal
    total_registration_collected: Decimal
    stall_booking_fees: Decimal
    total_collected: Decimal
    total_paid: Decimal
    cash_balance: Decimal
    stall_payments_total: Decimal
    other_payments_total: Decimal
    employment_booking_total: Decimal
    employment_registration_total: Decimal


@dataclass(frozen=True)
class CollectionEntry:
    kind: str
    category: str
    description: str
    amount: Decimal
    source_id: Optional[int] = None
    date: Optional[datetime] = field(default=None, compare=False)


def selling_price(cost_price: Decimal, margin: Decimal = DEFAULT_MARGIN) -> Decimal:
    return cost_price * (1 + margin / HUNDRED)


def line_item_balance(item: LineItem, default_margin: Decimal = DEFAULT_MARGIN) -> Decimal:
    """Vendor's share of one line: ``price * quantity`` less that line's margin."""
    price = item.price if item.price is not None else ZERO
    quantity = item.quantity if item.quantity is not None else Decimal("1")
    margin = item.margin if item.margin is not None else default_margin
    return price * quantity * (1 - margin / HUNDRED)


def _stall_transactions(stall_id: int, transactions: Iterable[BillingRecord]) -> list[BillingRecord]:
    return [tx for tx in transactions if tx.stall_id == stall_id]


def stall_summary(
    stall_id: int,
    transactions: Iterable[BillingRecord],
    payments: Iterable[PaymentRecord],
    default_margin: Decimal = DEFAULT_MARGIN,
) -> StallSummary:
    """Billed amount, bill balance, paid and remaining balance for one stall.

    The bill balance applies each line item's own margin, so it is not the
    billed amount less a flat percentage.
    """
    own = _stall_transactions(stall_id, transactions)
    billed_amount = sum((tx.total for tx in own), ZERO)
    bill_balance = sum(
        (line_item_balance(item, default_margin) for tx in own for item in tx.items),
        ZERO,
    )
    already_paid = sum(
        (
            p.amount_paid
            for p in payments
            if p.stall_id == stall_id and p.payment_type == PARTICIPANT
        ),
        ZERO,
    )
    # payments are stored in whole cents
    remaining_balance = max(ZERO, bill_balance - already_paid).quantize(CENT, rounding=ROUND_HALF_UP)
    return StallSummary(
        stall_id=stall_id,
        billed_amount=billed_amount,
        bill_balance=bill_balance,
        already_paid=already_paid,
        remaining_balance=remaining_balance,
    )


def _sum_payments(payments: Iterable[PaymentRecord], payment_type: str) -> Decimal:
    return sum((p.amount_paid for p in payments if p.payment_type == payment_type), ZERO)


def _sum_registrations(registrations: Iterable[RegistrationRecord], registration_type: str) -> Decimal:
    return sum(
        (r.amount for r in registrations if r.registration_type == registration_type),
        ZERO,
    )


def ledger_summary(
    stalls: Iterable[StallRecord],
    transactions: Iterable[BillingRecord],
    payments: Iterable[PaymentRecord],
    registrations: Iterable[RegistrationRecord],
) -> LedgerSummary:
    """Event-wide collections, payments and cash balance.

    Total paid counts ``other`` payments only; participant payments are
    reported separately in ``stall_payments_total``.
    """
    stalls = list(stalls)
    transactions = list(transactions)
    payments = list(payments)
    registrations = list(registrations)

    total_billing_collected = sum((tx.total for tx in transactions), ZERO)
    total_registration_collected = sum(
        (r.amount for r in registrations if r.registration_type != STALL_COUNTER), ZERO
    )
    stall_booking_fees = sum((s.registration_fee for s in stalls), ZERO)
    total_collected = total_billing_collected + total_registration_collected + stall_booking_fees

    other_payments_total = _sum_payments(payments, OTHER)
    total_paid = other_payments_total

    return LedgerSummary(
        total_billing_collected=total_billing_collected,
        total_registration_collected=total_registration_collected,
        stall_booking_fees=stall_booking_fees,
        total_collected=total_collected,
        total_paid=total_paid,
        cash_balance=total_collected - total_paid,
        stall_payments_total=_sum_payments(payments, PARTICIPANT),
        other_payments_total=other_payments_total,
        employment_booking_total=_sum_registrations(registrations, EMPLOYMENT_BOOKING),
        employment_registration_total=_sum_registrations(registrations, EMPLOYMENT_REGISTRATION),
    )


def collection_entries(
    stalls: Iterable[StallRecord],
    transactions: Iterable[BillingRecord],
    registrations: Iterable[RegistrationRecord],
) -> list[CollectionEntry]:
    entries = [
        CollectionEntry(
            kind="billing",
            category="Stall Billing",
            description=tx.stall_name or "Unknown Stall",
            amount=tx.total,
            source_id=tx.id,
            date=tx.created_at,
        )
        for tx in transactions
    ]
    entries.extend(
        CollectionEntry(
            kind="stall_booking",
            category="Stall Booking Fee",
            description=s.counter_name,
            amount=s.registration_fee,
            source_id=s.id,
            date=s.created_at,
        )
        for s in stalls
        if s.registration_fee > ZERO
    )
    entries.extend(
        CollectionEntry(
            kind="registration",
            category=(
                "Employment Booking"
                if r.registration_type == EMPLOYMENT_BOOKING
                else "Employment Registration"
            ),
            description=r.name or "",
            amount=r.amount,
            source_id=r.id,
            date=r.created_at,
        )
        for r in registrations
        if r.registration_type != STALL_COUNTER
    )
    # newest first, undated last
    entries.sort(key=lambda e: (e.date is not None, e.date.timestamp() if e.date else 0), reverse=True)
    return entries


def validate_participant_payment(summary: StallSummary, amount: Decimal) -> None:
    if amount <= ZERO:
        raise InvalidPaymentAmount("Payment amount must be greater than zero")
    if amount > summary.remaining_balance:
        raise PaymentExceedsBalance(amount, summary.remaining_balance)
