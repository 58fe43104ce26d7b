"""SQLAlchemy models for the operations portal."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, WriteOnlyMapped, mapped_column, relationship


CUSTOM_LINE_SKU = "OTHER"


class WorkorderStatus(str, Enum):
    WORK_ORDERED = "Work Ordered"
    COMPLETED = "Completed"


class ItemStatus(str, Enum):
    NOT_IN_WORKSHOP = "Not in Workshop"
    IN_WORKSHOP = "In Workshop"
    COMPLETED = "Completed"
    CANCELED = "Canceled"


class DeliveryStatus(str, Enum):
    TO_BE_BOOKED = "To Be Booked"
    BOOKED = "Booked for Delivery"
    COMPLETED = "Delivery Completed"


class CollectionStatus(str, Enum):
    TO_BE_BOOKED = "To Be Booked"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"


class Base(DeclarativeBase):
    """Base class for portal ORM models."""


class Customer(Base):
    __tablename__ = "customers"

    customer_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class Brand(Base):
    __tablename__ = "brands"

    brand_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    brand_name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)


class Product(Base):
    __tablename__ = "product"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),)

    sku: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    brand: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_cost_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Workorder(Base):
    __tablename__ = "workorder"

    workorder_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    customer_id: Mapped[int] = mapped_column(
        ForeignKey("customers.customer_id"), nullable=False, index=True
    )
    salesperson: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    delivery_suburb: Mapped[str | None] = mapped_column(String(128), nullable=True)
    delivery_state: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    delivery_charged_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lead_time: Mapped[str] = mapped_column(String(64), nullable=False)
    estimated_completion: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=WorkorderStatus.WORK_ORDERED.value, index=True
    )
    outstanding_balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    important_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    date_created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    customer: Mapped[Customer] = relationship(lazy="joined", innerjoin=True)
    items: Mapped[list[WorkorderItem]] = relationship(
        back_populates="workorder",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="WorkorderItem.workorder_items_id",
    )
    logs: WriteOnlyMapped[WorkorderLog] = relationship(
        back_populates="workorder",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class WorkorderItem(Base):
    __tablename__ = "workorder_items"

    workorder_items_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workorder_id: Mapped[int] = mapped_column(
        ForeignKey("workorder.workorder_id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Plain column: the custom-line sentinel has no product row.
    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    condition: Mapped[str | None] = mapped_column(String(64), nullable=True)
    technician_id: Mapped[str] = mapped_column(String(2), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ItemStatus.NOT_IN_WORKSHOP.value, index=True
    )
    in_workshop: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    workshop_duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    item_sn: Mapped[str | None] = mapped_column(String(128), nullable=True)
    selling_price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    workorder: Mapped[Workorder] = relationship(back_populates="items")


class WorkorderLog(Base):
    __tablename__ = "workorder_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workorder_id: Mapped[int] = mapped_column(
        ForeignKey("workorder.workorder_id", ondelete="CASCADE"), nullable=False, index=True
    )
    workorder_items_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(2), nullable=False)
    item_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    workorder: Mapped[Workorder] = relationship(back_populates="logs")


class Removalist(Base):
    __tablename__ = "removalist"

    removalist_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Delivery(Base):
    __tablename__ = "delivery"

    delivery_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    customer_id: Mapped[int] = mapped_column(
        ForeignKey("customers.customer_id"), nullable=False, index=True
    )
    delivery_suburb: Mapped[str | None] = mapped_column(String(128), nullable=True)
    delivery_state: Mapped[str] = mapped_column(String(16), nullable=False)
    delivery_charged_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    delivery_quoted_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    removalist_id: Mapped[int | None] = mapped_column(
        ForeignKey("removalist.removalist_id"), nullable=True
    )
    delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    delivery_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=DeliveryStatus.TO_BE_BOOKED.value, index=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Back-link only; deleting the work order leaves this value in place.
    workorder_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    date_created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    customer: Mapped[Customer] = relationship(lazy="joined", innerjoin=True)
    removalist: Mapped[Removalist | None] = relationship(lazy="joined")


class Collection(Base):
    __tablename__ = "collections"

    collection_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    suburb: Mapped[str | None] = mapped_column(String(128), nullable=True)
    state: Mapped[str | None] = mapped_column(String(16), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    removalist_id: Mapped[int | None] = mapped_column(
        ForeignKey("removalist.removalist_id"), nullable=True
    )
    collection_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=CollectionStatus.TO_BE_BOOKED.value, index=True
    )
    est_extraction_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    act_extraction_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    inventory_applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    removalist: Mapped[Removalist | None] = relationship(lazy="joined")
    items: Mapped[list[CollectionItem]] = relationship(
        back_populates="collection",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CollectionItem.collection_items_id",
    )


class CollectionItem(Base):
    __tablename__ = "collection_items"

    collection_items_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection_id: Mapped[int] = mapped_column(
        ForeignKey("collections.collection_id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_sku: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    purchase_price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    custom_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    collection: Mapped[Collection] = relationship(back_populates="items")


class WaitlistEntry(Base):
    __tablename__ = "waitlist"

    waitlist_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(
        ForeignKey("customers.customer_id", ondelete="CASCADE"), nullable=False, index=True
    )
    sku: Mapped[str] = mapped_column(ForeignKey("product.sku"), nullable=False, index=True)
    salesperson: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Active", index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    waitlisted: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    customer: Mapped[Customer] = relationship(lazy="joined", innerjoin=True)
    product: Mapped[Product] = relationship(lazy="joined")


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(2), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    access: Mapped[str] = mapped_column(String(32), nullable=False, default="staff", index=True)


class AccessLog(Base):
    __tablename__ = "access_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(2), nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
