"""
Database Schemas for the Water Allowance Ledger

Each Pydantic model corresponds to a MongoDB collection (lowercased class name),
except Plan and StatusHistoryEntry which are embedded and BalanceSnapshot which
is computed on demand and never stored.
"""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Literal, List, Dict, Any
from datetime import datetime, date


Weekday = Literal["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
DeliveryStatus = Literal["Pending", "In Transit", "Delivered"]
NotificationType = Literal["delivery", "compliance", "sanitation", "payment", "general", "top-up"]

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
NOTIFICATION_TYPES = ("delivery", "compliance", "sanitation", "payment", "general", "top-up")
DELIVERY_STATUSES = ("Pending", "In Transit", "Delivered")
DELIVERY_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class RefillStatus(str, Enum):
    REQUESTED = "Requested"
    IN_PRODUCTION = "In Production"
    OUT_FOR_DELIVERY = "Out for Delivery"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Plan(BaseModel):
    model_config = ConfigDict(frozen=True)

    liters_per_month: float = Field(0.0, ge=0, description="Base monthly allowance in liters")
    bonus_liters: float = Field(0.0, ge=0, description="Bonus liters added every cycle")
    delivery_day: Weekday = Field(..., description="Recurring delivery weekday")
    delivery_time: str = Field(..., pattern=DELIVERY_TIME_PATTERN, description="Recurring delivery time, HH:MM")
    consumption_based: bool = Field(False, description="Flow plan billed per liter instead of a fixed allowance")
    price_per_liter: float = Field(0.0, ge=0, description="Price per liter for consumption-based plans")
    monthly_price: float = Field(0.0, ge=0, description="Flat monthly price for fixed-allowance plans")


class Account(BaseModel):
    id: Optional[str] = Field(None, description="Account ObjectId as string")
    name: str = Field("", description="Contact name")
    business_name: str = Field("", description="Business name shown to admins")
    created_at: datetime = Field(..., description="Account creation time (UTC)")
    plan: Optional[Plan] = Field(None, description="Monthly entitlement, None until configured")


class DeliveryRecord(BaseModel):
    id: Optional[str] = Field(None, description="Delivery ObjectId as string")
    account_id: str = Field(..., description="Account ObjectId as string")
    date: datetime = Field(..., description="Scheduled/actual delivery time (UTC)")
    volume_containers: int = Field(..., ge=0, description="Containers delivered, 19.5 L each")
    status: DeliveryStatus = Field("Pending", description="Fulfillment status")
    proof_url: Optional[str] = Field(None, description="Proof of delivery URL")
    admin_notes: Optional[str] = Field(None, description="Internal notes from the fulfillment team")


class StatusHistoryEntry(BaseModel):
    status: RefillStatus
    timestamp: datetime


class RefillRequest(BaseModel):
    id: Optional[str] = Field(None, description="Refill request ObjectId as string")
    account_id: str = Field(..., description="Account ObjectId as string")
    requested_date: date = Field(..., description="Requested delivery date")
    containers: int = Field(..., gt=0, description="Containers requested")
    status: RefillStatus = Field(RefillStatus.REQUESTED, description="Lifecycle status")
    created_at: datetime = Field(..., description="Creation time (UTC)")
    updated_at: datetime = Field(..., description="Last transition time (UTC)")
    version: int = Field(0, ge=0, description="Optimistic concurrency counter, bumped on every write")
    status_history: List[StatusHistoryEntry] = Field(default_factory=list, description="One entry per transition")


class Notification(BaseModel):
    id: Optional[str] = Field(None, description="Notification id; caller-supplied ids make emits idempotent")
    account_id: str = Field(..., description="Recipient account")
    type: NotificationType = Field(..., description="Notification category")
    title: str = Field(..., min_length=1)
    description: str = Field("")
    created_at: datetime = Field(..., description="Creation time (UTC)")
    is_read: bool = Field(False, description="Owned by the UI layer")
    data: Dict[str, Any] = Field(default_factory=dict, description="Extra payload, e.g. request_id")


class RolloverOverride(BaseModel):
    account_id: str = Field(..., description="Account ObjectId as string")
    cycle: str = Field(..., pattern=r"^\d{4}-\d{2}$", description="Cycle the liters are carried into, YYYY-MM")
    source_cycle: str = Field(..., pattern=r"^\d{4}-\d{2}$", description="Cycle the liters were saved from")
    amount: float = Field(..., ge=0, description="Liters carried over")
    created_at: datetime = Field(..., description="When the customer saved the liters (UTC)")


class BalanceSnapshot(BaseModel):
    account_id: Optional[str] = None
    cycle: str
    monthly_plan_liters: float = 0.0
    bonus_liters: float = 0.0
    allocation: float = 0.0
    rollover_liters: float = 0.0
    total_liters_for_month: float = 0.0
    consumed_liters_this_cycle: float = 0.0
    saved_liters: float = 0.0
    current_balance: float = 0.0
    consumed_percentage: float = 0.0
    remaining_percentage: float = 100.0
    estimated_cost: Optional[float] = None
