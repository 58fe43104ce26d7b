"""Pydantic schemas for the operations service."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt, field_validator

from .models import CollectionStatus, DeliveryStatus, ItemStatus, WorkorderStatus

Money = Decimal


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


class _Stripped(BaseModel):
    """Blank strings arrive as ``None`` so presence checks see one shape."""

    @field_validator("*", mode="before")
    @classmethod
    def _strip_strings(cls, value: object) -> object:
        if isinstance(value, str):
            return _clean(value)
        return value


# Work orders


class WorkorderItemCreate(_Stripped):
    product_id: str = Field(min_length=1, max_length=64)
    quantity: PositiveInt
    condition: str | None = Field(default=None, max_length=64)
    technician_id: str | None = None
    status: ItemStatus | None = None
    item_sn: str | None = Field(default=None, max_length=128)
    selling_price: Money | None = Field(default=None, ge=0, decimal_places=2)


class WorkorderCreate(_Stripped):
    invoice_id: str | None = Field(default=None, max_length=64)
    customer_id: PositiveInt | None = None
    salesperson: str | None = Field(default=None, max_length=64)
    delivery_suburb: str | None = Field(default=None, max_length=128)
    delivery_state: str | None = Field(default=None, max_length=16)
    delivery_charged: Money | None = Field(default=None, ge=0, decimal_places=2)
    lead_time: str | None = Field(default=None, max_length=64)
    estimated_completion: date | None = None
    notes: str | None = None
    outstanding_balance: Money | None = Field(default=None, ge=0, decimal_places=2)
    important_flag: bool = False
    user_id: str | None = None
    items: list[WorkorderItemCreate] = Field(default_factory=list)


class WorkorderItemPatch(BaseModel):
    """Per-item patch; ``model_fields_set`` tells supplied fields from omitted ones."""

    workorder_items_id: PositiveInt
    technician_id: str | None = None
    status: ItemStatus | None = None
    workshop_duration: float | None = Field(default=None, ge=0)
    item_sn: str | None = Field(default=None, max_length=128)
    selling_price: Money | None = Field(default=None, ge=0, decimal_places=2)


class WorkorderPatch(BaseModel):
    status: WorkorderStatus | None = None
    notes: str | None = None
    delivery_charged: Money | None = Field(default=None, ge=0, decimal_places=2)
    outstanding_balance: Money | None = Field(default=None, ge=0, decimal_places=2)
    estimated_completion: date | None = None
    important_flag: bool | None = None
    user_id: str | None = None
    items: list[WorkorderItemPatch] = Field(default_factory=list)
    add_items: list[WorkorderItemCreate] = Field(default_factory=list)
    delete_item_ids: list[PositiveInt] = Field(default_factory=list)


class WorkorderCreated(BaseModel):
    workorder_id: int


class WorkorderItemView(BaseModel):
    workorder_items_id: int
    product_id: str
    product_name: str
    quantity: int
    condition: str | None
    technician_id: str
    status: ItemStatus
    in_workshop: datetime | None
    workshop_duration: float | None
    item_sn: str | None
    selling_price: Money | None


class ActivityEntry(BaseModel):
    id: int
    ts: datetime
    event_type: str
    user_id: str
    workorder_items_id: int | None
    product_name: str | None
    item_status: str | None


class WorkorderView(BaseModel):
    workorder_id: int
    invoice_id: str
    customer_id: int
    customer_name: str
    customer_email: str | None
    customer_phone: str | None
    salesperson: str
    delivery_suburb: str | None
    delivery_state: str
    delivery_charged: Money | None
    lead_time: str
    estimated_completion: date | None
    notes: str | None
    status: WorkorderStatus
    outstanding_balance: Money
    important_flag: bool
    date_created: datetime
    items: list[WorkorderItemView]
    activity: list[ActivityEntry]


class WorkorderSummary(BaseModel):
    workorder_id: int
    invoice_id: str
    customer_id: int
    customer_name: str
    salesperson: str
    delivery_suburb: str | None
    delivery_state: str
    status: WorkorderStatus
    outstanding_balance: Money
    important_flag: bool
    estimated_completion: date | None
    date_created: datetime
    item_count: int
    completed_count: int
    items_text: str


class WorkorderListResponse(BaseModel):
    items: list[WorkorderSummary]
    total: int


class TechnicianResponse(BaseModel):
    id: str
    name: str


# Deliveries and collections


class RemovalistResponse(BaseModel):
    removalist_id: int
    name: str
    phone: str | None
    email: str | None

    model_config = ConfigDict(from_attributes=True)


class DeliveryCreate(_Stripped):
    invoice_id: str | None = Field(default=None, max_length=64)
    customer_id: PositiveInt | None = None
    delivery_suburb: str | None = Field(default=None, max_length=128)
    delivery_state: str | None = Field(default=None, max_length=16)
    delivery_charged: Money | None = Field(default=None, ge=0, decimal_places=2)
    delivery_quoted: Money | None = Field(default=None, ge=0, decimal_places=2)
    removalist_id: PositiveInt | None = None
    delivery_date: date | None = None
    delivery_status: DeliveryStatus = DeliveryStatus.TO_BE_BOOKED
    notes: str | None = None
    workorder_id: PositiveInt | None = None
    user_id: str | None = None


class DeliveryPatch(BaseModel):
    invoice_id: str | None = Field(default=None, max_length=64)
    customer_id: PositiveInt | None = None
    delivery_suburb: str | None = Field(default=None, max_length=128)
    delivery_state: str | None = Field(default=None, max_length=16)
    delivery_charged: Money | None = Field(default=None, ge=0, decimal_places=2)
    delivery_quoted: Money | None = Field(default=None, ge=0, decimal_places=2)
    removalist_id: PositiveInt | None = None
    delivery_date: date | None = None
    delivery_status: DeliveryStatus | None = None
    notes: str | None = None
    user_id: str | None = None


class DeliveryResponse(BaseModel):
    delivery_id: int
    invoice_id: str
    customer_id: int
    customer_name: str
    delivery_suburb: str | None
    delivery_state: str
    delivery_charged: Money | None
    delivery_quoted: Money | None
    removalist_id: int | None
    removalist_name: str | None
    delivery_date: date | None
    delivery_status: DeliveryStatus
    notes: str | None
    workorder_id: int | None
    date_created: datetime


class DeliveryListResponse(BaseModel):
    items: list[DeliveryResponse]
    total: int


class CollectionItemInput(_Stripped):
    product_sku: str | None = Field(default=None, max_length=64)
    quantity: PositiveInt = 1
    purchase_price: Money | None = Field(default=None, ge=0, decimal_places=2)
    custom_description: str | None = None


class CollectionCreate(_Stripped):
    name: str | None = Field(default=None, max_length=128)
    phone: str | None = Field(default=None, max_length=32)
    email: str | None = Field(default=None, max_length=255)
    suburb: str | None = Field(default=None, max_length=128)
    state: str | None = Field(default=None, max_length=16)
    description: str | None = None
    removalist_id: PositiveInt | None = None
    collection_date: date | None = None
    notes: str | None = None
    status: CollectionStatus = CollectionStatus.TO_BE_BOOKED
    est_extraction: Money | None = Field(default=None, ge=0, decimal_places=2)
    act_extraction: Money | None = Field(default=None, ge=0, decimal_places=2)
    items: list[CollectionItemInput] = Field(default_factory=list)


class CollectionPatch(BaseModel):
    name: str | None = Field(default=None, max_length=128)
    phone: str | None = Field(default=None, max_length=32)
    email: str | None = Field(default=None, max_length=255)
    suburb: str | None = Field(default=None, max_length=128)
    state: str | None = Field(default=None, max_length=16)
    description: str | None = None
    removalist_id: PositiveInt | None = None
    collection_date: date | None = None
    notes: str | None = None
    status: CollectionStatus | None = None
    est_extraction: Money | None = Field(default=None, ge=0, decimal_places=2)
    act_extraction: Money | None = Field(default=None, ge=0, decimal_places=2)
    items: list[CollectionItemInput] | None = None


class CollectionItemResponse(BaseModel):
    collection_items_id: int
    product_sku: str
    product_name: str | None
    quantity: int
    purchase_price: Money | None
    custom_description: str | None


class CollectionResponse(BaseModel):
    collection_id: int
    name: str
    phone: str | None
    email: str | None
    suburb: str | None
    state: str | None
    description: str | None
    removalist_id: int | None
    removalist_name: str | None
    collection_date: date | None
    notes: str | None
    status: CollectionStatus
    est_extraction: Money | None
    act_extraction: Money | None
    inventory_applied_at: datetime | None
    created_at: datetime
    items: list[CollectionItemResponse]


class InventoryApplyLine(BaseModel):
    sku: str
    quantity: int
    stock_before: int
    stock_after: int
    avg_cost: Money | None


class InventoryApplyResponse(BaseModel):
    collection_id: int
    applied: bool
    message: str
    lines: list[InventoryApplyLine] = Field(default_factory=list)


# Catalog


class CustomerCreate(_Stripped):
    name: str | None = Field(default=None, max_length=128)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=32)
    address: str | None = Field(default=None, max_length=255)
    notes: str | None = None


class CustomerUpdate(_Stripped):
    name: str | None = Field(default=None, max_length=128)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=32)
    address: str | None = Field(default=None, max_length=255)
    notes: str | None = None


class CustomerResponse(BaseModel):
    customer_id: int
    name: str
    email: str
    phone: str | None
    address: str | None
    notes: str | None

    model_config = ConfigDict(from_attributes=True)


class CustomerListResponse(BaseModel):
    items: list[CustomerResponse]
    total: int


class ProductCreate(_Stripped):
    sku: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    brand: str | None = Field(default=None, max_length=128)
    price: Money = Field(default=Decimal("0"), ge=0, decimal_places=2)
    stock: NonNegativeInt = 0

    @field_validator("sku")
    @classmethod
    def _upper_sku(cls, value: str) -> str:
        return value.upper()


class ProductUpdate(_Stripped):
    name: str | None = Field(default=None, max_length=255)
    brand: str | None = Field(default=None, max_length=128)
    price: Money | None = Field(default=None, ge=0, decimal_places=2)
    stock: NonNegativeInt | None = None


class ProductResponse(BaseModel):
    sku: str
    name: str
    brand: str | None
    price: Money
    avg_cost: Money | None
    stock: int


class BrandResponse(BaseModel):
    brand_id: int
    brand_name: str

    model_config = ConfigDict(from_attributes=True)


class WaitlistCreate(_Stripped):
    customer_id: PositiveInt | None = None
    sku: str | None = Field(default=None, max_length=64)
    salesperson: str | None = Field(default=None, max_length=64)
    status: str = Field(default="Active", max_length=32)
    notes: str | None = None


class WaitlistUpdate(_Stripped):
    salesperson: str | None = Field(default=None, max_length=64)
    status: str | None = Field(default=None, max_length=32)
    notes: str | None = None


class WaitlistResponse(BaseModel):
    waitlist_id: int
    customer_id: int
    customer_name: str
    sku: str
    product_name: str
    stock: int
    salesperson: str | None
    status: str
    notes: str | None
    waitlisted: datetime


# Accounts


class UserRegister(BaseModel):
    id: str = Field(min_length=1, max_length=2)
    name: str = Field(min_length=1, max_length=128)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1)
    access: str = Field(default="staff", max_length=32)

    @field_validator("id")
    @classmethod
    def _upper_id(cls, value: str) -> str:
        return value.upper()

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=128)
    email: str | None = Field(default=None, max_length=255)
    password: str | None = None
    access: str | None = Field(default=None, max_length=32)


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    access: str

    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class LoginResponse(BaseModel):
    token: str
    id: str
    name: str
    email: str
    access: str


class ChangePasswordRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=2)
    old_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class AccessLogCreate(_Stripped):
    user_id: str | None = None
    description: str | None = Field(default=None, max_length=255)


class AccessLogResponse(BaseModel):
    id: int
    user_id: str
    description: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
