from sqlalchemy import (
    Integer, String, DateTime, Date, Enum, ForeignKey, Float, Text, Boolean, JSON, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from datetime import datetime, date
import enum
from .db import Base

class OrderStatus(str, enum.Enum):
    AWAITING_DEPOSIT = "AWAITING_DEPOSIT"
    OPEN = "OPEN"
    MATCHING = "MATCHING"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    CLOSING_SUBMITTED = "CLOSING_SUBMITTED"
    FINAL_AMOUNT_CONFIRMED = "FINAL_AMOUNT_CONFIRMED"
    BALANCE_PAID = "BALANCE_PAID"
    SETTLEMENT_PAID = "SETTLEMENT_PAID"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"

class AssignmentMode(str, enum.Enum):
    OPEN = "OPEN"      # helpers self-apply
    DIRECT = "DIRECT"  # enterprise orders, admin picks helpers

class Category(str, enum.Enum):
    PARCEL = "parcel"
    OTHER = "other"
    COLD = "cold"

class ApplicationStatus(str, enum.Enum):
    APPLIED = "applied"
    APPROVED = "approved"
    REJECTED = "rejected"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"

ACTIVE_APPLICATION_STATUSES = (
    ApplicationStatus.APPROVED,
    ApplicationStatus.SCHEDULED,
    ApplicationStatus.IN_PROGRESS,
)

class ClosingStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"

class PaymentKind(str, enum.Enum):
    DEPOSIT = "deposit"
    BALANCE = "balance"
    REFUND = "refund"

class RefundPolicyKey(str, enum.Enum):
    BEFORE_MATCHING = "before_matching"
    AFTER_MATCHING = "after_matching"

class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"

class EnterpriseAccount(Base):
    __tablename__ = "enterprise_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    contact_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    commission_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

class PricingPolicy(Base):
    __tablename__ = "pricing_policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    courier_name: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    category: Mapped[Category] = mapped_column(Enum(Category), default=Category.PARCEL, index=True)
    base_price_per_unit: Mapped[int] = mapped_column(Integer, default=0)
    min_total: Mapped[int] = mapped_column(Integer, default=0)
    urgent_surcharge_rate: Mapped[int] = mapped_column(Integer, default=0)  # percent
    commission_rate: Mapped[int] = mapped_column(Integer, default=0)  # percent
    etc_price_per_unit: Mapped[int] = mapped_column(Integer, default=0)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)  # category fallback row
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class RefundPolicy(Base):
    __tablename__ = "refund_policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[RefundPolicyKey] = mapped_column(Enum(RefundPolicyKey), unique=True)
    refund_rate: Mapped[int] = mapped_column(Integer)  # 0-100
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (CheckConstraint("current_helpers <= max_helpers", name="ck_orders_helper_capacity"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    order_number: Mapped[str] = mapped_column(String(12), unique=True, index=True)
    requester_id: Mapped[str] = mapped_column(String(64), index=True)
    enterprise_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("enterprise_accounts.id"), nullable=True)
    assignment_mode: Mapped[AssignmentMode] = mapped_column(Enum(AssignmentMode), default=AssignmentMode.OPEN)
    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), default=OrderStatus.AWAITING_DEPOSIT, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category: Mapped[Category] = mapped_column(Enum(Category), default=Category.PARCEL)
    courier_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    delivery_area: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_urgent: Mapped[bool] = mapped_column(Boolean, default=False)
    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    scheduled_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Commercials (snapshotted at creation)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    freight: Mapped[int | None] = mapped_column(Integer, nullable=True)
    base_price_per_unit: Mapped[int] = mapped_column(Integer, default=0)
    unit_price: Mapped[int] = mapped_column(Integer, default=0)
    min_total_applied: Mapped[bool] = mapped_column(Boolean, default=False)
    urgent_applied: Mapped[bool] = mapped_column(Boolean, default=False)
    total_amount: Mapped[int] = mapped_column(Integer, default=0)
    deposit_rate: Mapped[float] = mapped_column(Float, default=0.0)
    deposit_amount: Mapped[int] = mapped_column(Integer, default=0)
    balance_amount: Mapped[int] = mapped_column(Integer, default=0)
    balance_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    commission_rate: Mapped[int] = mapped_column(Integer, default=0)
    etc_price_per_unit: Mapped[int] = mapped_column(Integer, default=0)
    final_amount_locked: Mapped[bool] = mapped_column(Boolean, default=False)

    # Capacity
    max_helpers: Mapped[int] = mapped_column(Integer, default=3)
    current_helpers: Mapped[int] = mapped_column(Integer, default=0)

    # Cancellation / close-out
    refund_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refund_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    balance_paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    enterprise: Mapped["EnterpriseAccount | None"] = relationship("EnterpriseAccount")
    applications: Mapped[list["HelperApplication"]] = relationship(
        "HelperApplication", back_populates="order", cascade="all, delete-orphan",
        order_by="HelperApplication.id")
    closing_reports: Mapped[list["ClosingReport"]] = relationship(
        "ClosingReport", back_populates="order", cascade="all, delete-orphan", order_by="ClosingReport.id")
    contracts: Mapped[list["Contract"]] = relationship("Contract", back_populates="order", cascade="all, delete-orphan")
    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="order", cascade="all, delete-orphan")
    settlements: Mapped[list["Settlement"]] = relationship("Settlement", back_populates="order", cascade="all, delete-orphan")

    @property
    def is_direct(self) -> bool:
        return self.assignment_mode == AssignmentMode.DIRECT

    @property
    def active_applications(self) -> list["HelperApplication"]:
        return [a for a in self.applications if a.status in ACTIVE_APPLICATION_STATUSES]

    @property
    def current_report(self) -> "ClosingReport | None":
        for r in self.closing_reports:
            if not r.superseded:
                return r
        return None

class HelperApplication(Base):
    __tablename__ = "helper_applications"
    __table_args__ = (UniqueConstraint("order_id", "helper_id", name="uq_application_order_helper"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), index=True)
    helper_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[ApplicationStatus] = mapped_column(Enum(ApplicationStatus), default=ApplicationStatus.APPLIED)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    expected_arrival: Mapped[str | None] = mapped_column(String(64), nullable=True)
    applied_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    removed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="applications")

class ClosingReport(Base):
    __tablename__ = "closing_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), index=True)
    helper_id: Mapped[str] = mapped_column(String(64))
    delivered_count: Mapped[int] = mapped_column(Integer, default=0)
    returned_count: Mapped[int] = mapped_column(Integer, default=0)
    misc_count: Mapped[int] = mapped_column(Integer, default=0)
    extra_costs: Mapped[list] = mapped_column(JSON, default=list)  # [{name, unit_price, quantity}]
    attachments: Mapped[list] = mapped_column(JSON, default=list)  # URLs only
    status: Mapped[ClosingStatus] = mapped_column(Enum(ClosingStatus), default=ClosingStatus.SUBMITTED)
    superseded: Mapped[bool] = mapped_column(Boolean, default=False)
    vat_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    final_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="closing_reports")

class Contract(Base):
    __tablename__ = "contracts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), index=True)
    helper_id: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), default="active")  # active | cancelled
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="contracts")

class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (UniqueConstraint("provider", "transaction_id", name="uq_payment_provider_txn"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), index=True)
    kind: Mapped[PaymentKind] = mapped_column(Enum(PaymentKind))
    amount: Mapped[int] = mapped_column(Integer)
    provider: Mapped[str] = mapped_column(String(32), default="manual")
    transaction_id: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    order: Mapped["Order"] = relationship("Order", back_populates="payments")

class Settlement(Base):
    __tablename__ = "settlements"
    __table_args__ = (UniqueConstraint("order_id", "helper_id", name="uq_settlement_order_helper"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), index=True)
    helper_id: Mapped[str] = mapped_column(String(64))
    gross_amount: Mapped[int] = mapped_column(Integer)
    platform_fee: Mapped[int] = mapped_column(Integer)
    damage_deduction: Mapped[int] = mapped_column(Integer, default=0)
    payout_amount: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(16), default="paid")
    paid_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    order: Mapped["Order"] = relationship("Order", back_populates="settlements")

class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipient_id: Mapped[str] = mapped_column(String(64), index=True)
    kind: Mapped[str] = mapped_column(String(64))
    order_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("orders.id"), nullable=True)
    message: Mapped[str] = mapped_column(Text)
    dedupe_key: Mapped[str] = mapped_column(String(200), unique=True)
    status: Mapped[NotificationStatus] = mapped_column(Enum(NotificationStatus), default=NotificationStatus.PENDING, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("orders.id"), index=True, nullable=True)
    order_number: Mapped[str | None] = mapped_column(String(12), nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(16), nullable=True)
    action: Mapped[str] = mapped_column(String(64))
    meta: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"
    __table_args__ = (UniqueConstraint("key", "method", "path", name="uq_idempotency_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128))
    method: Mapped[str] = mapped_column(String(8))
    path: Mapped[str] = mapped_column(String(256))
    status_code: Mapped[int] = mapped_column(Integer, default=102)
    response_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
