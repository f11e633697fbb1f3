from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Dict, List, Optional, Literal
from datetime import datetime, date

from .codes import format_order_number

Role = Literal["requester", "helper", "admin", "system"]

class Actor(BaseModel):
    id: str
    role: Role

SYSTEM_ACTOR = Actor(id="system", role="system")

class OrderCreate(BaseModel):
    category: Literal["parcel", "other", "cold"] = "parcel"
    courier_name: Optional[str] = None
    quantity: int = 0
    freight: Optional[int] = None
    base_price_per_unit: Optional[int] = None
    is_urgent: bool = False
    scheduled_date: Optional[date] = None
    scheduled_end_date: Optional[date] = None
    balance_due_date: Optional[date] = None
    delivery_area: Optional[str] = None
    contact_phone: Optional[str] = None
    requester_id: Optional[str] = None
    enterprise_id: Optional[int] = None
    max_helpers: Optional[int] = Field(default=None, ge=1)

class ApplicationIn(BaseModel):
    message: Optional[str] = None
    expected_arrival: Optional[str] = None

class AssignIn(BaseModel):
    helper_id: str

class DirectAssignIn(BaseModel):
    helper_ids: List[str]

class CancelIn(BaseModel):
    reason: Optional[str] = None

class ExtraCostIn(BaseModel):
    name: str
    unit_price: int = Field(ge=0)
    quantity: int = Field(ge=0)

class ClosingIn(BaseModel):
    delivered_count: int = Field(default=0, ge=0)
    returned_count: int = Field(default=0, ge=0)
    misc_count: int = Field(default=0, ge=0)
    extra_costs: List[ExtraCostIn] = Field(default_factory=list)
    attachments: List[str] = Field(default_factory=list)

class PaymentWebhookIn(BaseModel):
    provider: str
    transaction_id: str
    order_id: int
    amount: int
    purpose: Literal["deposit", "balance"] = "balance"
    paid_at: Optional[str] = None

class RefundPolicyIn(BaseModel):
    refund_rate: int = Field(ge=0, le=100)
    description: Optional[str] = None

class PricingPolicyIn(BaseModel):
    category: Literal["parcel", "other", "cold"] = "parcel"
    base_price_per_unit: int = Field(gt=0)
    min_total: int = Field(default=0, ge=0)
    urgent_surcharge_rate: int = Field(default=0, ge=0, le=100)
    commission_rate: int = Field(default=0, ge=0, le=100)
    etc_price_per_unit: int = Field(default=0, ge=0)
    is_default: bool = False
    is_active: bool = True

class EnterpriseIn(BaseModel):
    name: str
    contact_phone: Optional[str] = None
    commission_rate: Optional[int] = Field(default=None, ge=0, le=100)

class SettleIn(BaseModel):
    deductions: Dict[str, int] = Field(default_factory=dict)

class SweepIn(BaseModel):
    today: Optional[date] = None

class ApplicationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    helper_id: str
    status: str
    message: Optional[str]
    expected_arrival: Optional[str]
    applied_at: datetime
    approved_at: Optional[datetime]

    @field_validator("status", mode="before")
    @classmethod
    def _enum_value(cls, v):
        return getattr(v, "value", v)

class ClosingReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    helper_id: str
    delivered_count: int
    returned_count: int
    misc_count: int
    extra_costs: list
    attachments: list
    status: str
    vat_amount: Optional[int]
    final_amount: Optional[int]
    submitted_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def _enum_value(cls, v):
        return getattr(v, "value", v)

class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    order_number_display: str = ""
    requester_id: str
    enterprise_id: Optional[int]
    assignment_mode: str
    status: str
    category: str
    courier_name: Optional[str]
    is_urgent: bool
    quantity: int
    freight: Optional[int]
    base_price_per_unit: int
    unit_price: int
    min_total_applied: bool
    urgent_applied: bool
    total_amount: int
    deposit_amount: int
    balance_amount: int
    balance_due_date: Optional[date]
    max_helpers: int
    current_helpers: int
    scheduled_date: Optional[date]
    scheduled_end_date: Optional[date]
    final_amount_locked: bool
    refund_amount: Optional[int]
    created_at: datetime

    @field_validator("status", "assignment_mode", "category", mode="before")
    @classmethod
    def _enum_value(cls, v):
        return getattr(v, "value", v)

    @model_validator(mode="after")
    def _display_number(self):
        self.order_number_display = format_order_number(self.order_number)
        return self

class AssignmentOut(BaseModel):
    assigned_count: int
    helpers: List[str]
    status: str

class RemovalOut(BaseModel):
    remaining_helpers: int
    new_status: str

class CancelOut(BaseModel):
    order: OrderOut
    refund_amount: int
    refund_rate: int

class RefundPolicyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    refund_rate: int
    description: Optional[str]

    @field_validator("key", mode="before")
    @classmethod
    def _enum_value(cls, v):
        return getattr(v, "value", v)

class PricingPolicyOut(PricingPolicyIn):
    model_config = ConfigDict(from_attributes=True)

    courier_name: str

    @field_validator("category", mode="before")
    @classmethod
    def _enum_value(cls, v):
        return getattr(v, "value", v)

class EnterpriseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    contact_phone: Optional[str]
    commission_rate: Optional[int]

class SettlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    helper_id: str
    gross_amount: int
    platform_fee: int
    damage_deduction: int
    payout_amount: int

class SettlementRunOut(BaseModel):
    closed: List[int]

class SweepOut(BaseModel):
    started: List[int]
    overdue: List[int]

class AttachmentOut(BaseModel):
    url: str
