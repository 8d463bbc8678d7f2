from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from eventhub.db import Base

ID_TYPE = BigInteger().with_variant(Integer, "sqlite")
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")
MONEY = Numeric(10, 2)


class Stall(Base):
    __tablename__ = "stall"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    counter_name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    participant_name: Mapped[str] = mapped_column(Text, nullable=False)
    mobile: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    registration_fee: Mapped[Numeric] = mapped_column(MONEY, nullable=False, default=0)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class Product(Base):
    __tablename__ = "product"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    stall_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("stall.id", ondelete="CASCADE"), nullable=False
    )
    item_name: Mapped[str] = mapped_column(Text, nullable=False)
    cost_price: Mapped[Numeric] = mapped_column(MONEY, nullable=False)
    event_margin: Mapped[Numeric] = mapped_column(Numeric(5, 2), nullable=False, default=20)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class BillingTransaction(Base):
    __tablename__ = "billing_transaction"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    stall_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("stall.id", ondelete="CASCADE"), nullable=False
    )
    receipt_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    items: Mapped[list] = mapped_column(JSON_TYPE, nullable=False, default=list)
    subtotal: Mapped[Numeric] = mapped_column(MONEY, nullable=False)
    total: Mapped[Numeric] = mapped_column(MONEY, nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class Registration(Base):
    __tablename__ = "registration"
    __table_args__ = (
        CheckConstraint(
            "registration_type IN ('stall_counter', 'employment_booking', 'employment_registration')",
            name="registration_type",
        ),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    registration_type: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    mobile: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(Text)
    amount: Mapped[Numeric] = mapped_column(MONEY, nullable=False, default=0)
    receipt_number: Mapped[str | None] = mapped_column(Text, unique=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class Payment(Base):
    __tablename__ = "payment"
    __table_args__ = (
        CheckConstraint("payment_type IN ('participant', 'other')", name="payment_type"),
        CheckConstraint("amount_paid > 0", name="payment_amount_positive"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    payment_type: Mapped[str] = mapped_column(Text, nullable=False)
    stall_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("stall.id", ondelete="SET NULL")
    )
    total_billed: Mapped[Numeric] = mapped_column(MONEY, nullable=False, default=0)
    margin_deducted: Mapped[Numeric] = mapped_column(MONEY, nullable=False, default=0)
    amount_paid: Mapped[Numeric] = mapped_column(MONEY, nullable=False)
    narration: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class Panchayath(Base):
    __tablename__ = "panchayath"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class Ward(Base):
    __tablename__ = "ward"
    __table_args__ = (
        UniqueConstraint("panchayath_id", "ward_number", name="uq_ward_panchayath_number"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    panchayath_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("panchayath.id", ondelete="CASCADE"), nullable=False
    )
    ward_number: Mapped[str] = mapped_column(Text, nullable=False)
    ward_name: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class SurveyShare(Base):
    __tablename__ = "survey_share"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    mobile: Mapped[str] = mapped_column(Text, nullable=False)
    panchayath_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("panchayath.id", ondelete="CASCADE"), nullable=False
    )
    ward_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("ward.id", ondelete="CASCADE"), nullable=False
    )
    shared_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class SurveyContent(Base):
    __tablename__ = "survey_content"
    __table_args__ = (
        CheckConstraint(
            "content_type IN ('video', 'poster', 'writeup')", name="survey_content_type"
        ),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    content_type: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content_url: Mapped[str | None] = mapped_column(Text)
    content_text: Mapped[str | None] = mapped_column(Text)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class StallEnquiryField(Base):
    __tablename__ = "stall_enquiry_field"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    field_label: Mapped[str] = mapped_column(Text, nullable=False)
    field_type: Mapped[str] = mapped_column(Text, nullable=False, default="text")
    options: Mapped[list | None] = mapped_column(JSON_TYPE)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    show_conditional_on: Mapped[str | None] = mapped_column(Text)
    conditional_value: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class StallEnquiry(Base):
    __tablename__ = "stall_enquiry"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    mobile: Mapped[str] = mapped_column(Text, nullable=False)
    panchayath_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("panchayath.id")
    )
    ward_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("ward.id"))
    responses: Mapped[dict] = mapped_column(JSON_TYPE, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class Admin(Base):
    __tablename__ = "admin"
    __table_args__ = (
        CheckConstraint("role IN ('super_admin', 'admin')", name="admin_role"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    role: Mapped[str] = mapped_column(Text, nullable=False, default="admin")
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class AdminPermission(Base):
    __tablename__ = "admin_permission"
    __table_args__ = (
        UniqueConstraint("admin_id", "module", name="uq_admin_permission_module"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    admin_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("admin.id", ondelete="CASCADE"), nullable=False
    )
    module: Mapped[str] = mapped_column(Text, nullable=False)
    can_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_create: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_update: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_delete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
