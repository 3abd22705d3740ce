"""SQLAlchemy ORM models."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from repair_desk.db.session import Base


class Shop(Base):
    """Represents a tenant repair shop."""

    __tablename__ = "shops"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False, unique=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="America/New_York",
        server_default=text("'America/New_York'"),
    )
    labor_rate: Mapped[float | None] = mapped_column(Float, nullable=True)

    accepts_online_booking: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    min_notice_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_lead_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    stripe_account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_charges_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stripe_payouts_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stripe_details_submitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stripe_onboarding_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    stripe_subscription_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    stripe_trial_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stripe_current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    plan: Mapped[str | None] = mapped_column(String(32), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    hours: Mapped[list["ShopHours"]] = relationship(back_populates="shop")
    profiles: Mapped[list["Profile"]] = relationship(back_populates="shop")


class ShopHours(Base):
    """Weekly opening hours; weekday may be 0..6 or 1..7 depending on the importer."""

    __tablename__ = "shop_hours"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)
    open_time: Mapped[str] = mapped_column(String(8), nullable=False)
    close_time: Mapped[str] = mapped_column(String(8), nullable=False)

    shop: Mapped["Shop"] = relationship(back_populates="hours")


class ShopTimeOff(Base):
    __tablename__ = "shop_time_off"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Profile(Base):
    """An authenticated user: staff member, fleet user or portal customer."""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int | None] = mapped_column(ForeignKey("shops.id"), nullable=True, index=True)
    role: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="customer",
        server_default=text("'customer'"),
    )
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    access_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)

    stripe_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_checkout_session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    stripe_checkout_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    shop: Mapped[Optional["Shop"]] = relationship(back_populates="profiles")


class Customer(Base):
    """Represents a shop customer; `user_id` links a portal login."""

    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int | None] = mapped_column(ForeignKey("shops.id"), nullable=True, index=True)
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("profiles.id"),
        nullable=True,
        unique=True,
        index=True,
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    vehicles: Mapped[list["Vehicle"]] = relationship(back_populates="customer")


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int | None] = mapped_column(ForeignKey("shops.id"), nullable=True, index=True)
    customer_id: Mapped[int | None] = mapped_column(
        ForeignKey("customers.id"),
        nullable=True,
        index=True,
    )
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    make: Mapped[str | None] = mapped_column(String(64), nullable=True)
    model: Mapped[str | None] = mapped_column(String(64), nullable=True)
    vin: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    license_plate: Mapped[str | None] = mapped_column(String(32), nullable=True)
    unit_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    engine_family: Mapped[str | None] = mapped_column(String(64), nullable=True)
    mileage: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_diesel: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_heavy_duty: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_4x4: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    customer: Mapped[Optional["Customer"]] = relationship(back_populates="vehicles")


class WorkOrder(Base):
    """A single shop visit containing one or more job lines."""

    __tablename__ = "work_orders"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    customer_id: Mapped[int | None] = mapped_column(
        ForeignKey("customers.id"),
        nullable=True,
        index=True,
    )
    vehicle_id: Mapped[int | None] = mapped_column(
        ForeignKey("vehicles.id"),
        nullable=True,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="open",
        server_default=text("'open'"),
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    odometer_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    is_waiter: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invoiced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    invoice_total: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    lines: Mapped[list["WorkOrderLine"]] = relationship(
        back_populates="work_order",
        order_by="WorkOrderLine.id",
    )
    customer: Mapped[Optional["Customer"]] = relationship()
    vehicle: Mapped[Optional["Vehicle"]] = relationship()


class WorkOrderLine(Base):
    """An individual job within a work order."""

    __tablename__ = "work_order_lines"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    work_order_id: Mapped[int] = mapped_column(
        ForeignKey("work_orders.id"),
        nullable=False,
        index=True,
    )
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    vehicle_id: Mapped[int | None] = mapped_column(ForeignKey("vehicles.id"), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="awaiting_approval",
        server_default=text("'awaiting_approval'"),
    )
    approval_state: Mapped[str | None] = mapped_column(String(32), nullable=True)

    complaint: Mapped[str | None] = mapped_column(Text, nullable=True)
    cause: Mapped[str | None] = mapped_column(Text, nullable=True)
    correction: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    labor_time: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_estimate: Mapped[float | None] = mapped_column(Float, nullable=True)
    service_code: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    odometer_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    assigned_tech_id: Mapped[int | None] = mapped_column(
        ForeignKey("profiles.id"),
        nullable=True,
        index=True,
    )
    inspection_session_id: Mapped[int | None] = mapped_column(
        ForeignKey("inspection_sessions.id"),
        nullable=True,
    )
    menu_item_id: Mapped[int | None] = mapped_column(ForeignKey("menu_items.id"), nullable=True)
    parts_needed: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    punchable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    void_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    work_order: Mapped["WorkOrder"] = relationship(back_populates="lines")
    allocations: Mapped[list["WorkOrderPartAllocation"]] = relationship(
        back_populates="line",
        cascade="all, delete-orphan",
    )


class WorkOrderLineTechnician(Base):
    __tablename__ = "work_order_line_technicians"
    __table_args__ = (
        UniqueConstraint(
            "work_order_line_id",
            "technician_id",
            name="uq_line_technicians_line_tech",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    work_order_line_id: Mapped[int] = mapped_column(
        ForeignKey("work_order_lines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    technician_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), nullable=False, index=True)
    assigned_by: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class JobPunch(Base):
    """Technician time on a line. Only one open punch per technician."""

    __tablename__ = "job_punches"
    __table_args__ = (
        Index(
            "uq_job_punches_open_per_tech",
            "technician_id",
            unique=True,
            sqlite_where=text("ended_at IS NULL"),
            postgresql_where=text("ended_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    work_order_line_id: Mapped[int] = mapped_column(
        ForeignKey("work_order_lines.id"),
        nullable=False,
        index=True,
    )
    technician_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class WorkOrderQuoteLine(Base):
    __tablename__ = "work_order_quote_lines"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    work_order_id: Mapped[int] = mapped_column(
        ForeignKey("work_orders.id"),
        nullable=False,
        index=True,
    )
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    job_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    qty: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    labor_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_estimate: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_complaint: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_cause: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_correction: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="draft",
        server_default=text("'draft'"),
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class Part(Base):
    __tablename__ = "parts"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    unit_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    unit_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    quantity_on_hand: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0,
        server_default=text("0"),
    )


class WorkOrderPartAllocation(Base):
    __tablename__ = "work_order_part_allocations"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    work_order_line_id: Mapped[int] = mapped_column(
        ForeignKey("work_order_lines.id"),
        nullable=False,
        index=True,
    )
    part_id: Mapped[int] = mapped_column(ForeignKey("parts.id"), nullable=False, index=True)
    qty: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    line: Mapped["WorkOrderLine"] = relationship(back_populates="allocations")
    part: Mapped["Part"] = relationship()


class StockMove(Base):
    """Signed stock movement; negative qty consumes stock."""

    __tablename__ = "stock_moves"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    part_id: Mapped[int] = mapped_column(ForeignKey("parts.id"), nullable=False, index=True)
    qty: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    reference_kind: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reference_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class PartRequest(Base):
    __tablename__ = "part_requests"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    work_order_id: Mapped[int | None] = mapped_column(
        ForeignKey("work_orders.id"),
        nullable=True,
        index=True,
    )
    work_order_line_id: Mapped[int | None] = mapped_column(
        ForeignKey("work_order_lines.id"),
        nullable=True,
    )
    requested_by: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="requested",
        server_default=text("'requested'"),
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    items: Mapped[list["PartRequestItem"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="PartRequestItem.id",
    )


class PartRequestItem(Base):
    __tablename__ = "part_request_items"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    request_id: Mapped[int] = mapped_column(
        ForeignKey("part_requests.id"),
        nullable=False,
        index=True,
    )
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    qty: Mapped[float] = mapped_column(Float, nullable=False, default=1)
    part_id: Mapped[int | None] = mapped_column(ForeignKey("parts.id"), nullable=True)
    quoted_price: Mapped[float | None] = mapped_column(Float, nullable=True)

    request: Mapped["PartRequest"] = relationship(back_populates="items")


class InspectionTemplate(Base):
    __tablename__ = "inspection_templates"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sections: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class InspectionSession(Base):
    __tablename__ = "inspection_sessions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    work_order_id: Mapped[int] = mapped_column(
        ForeignKey("work_orders.id"),
        nullable=False,
        index=True,
    )
    template_id: Mapped[int | None] = mapped_column(
        ForeignKey("inspection_templates.id"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="in_progress",
        server_default=text("'in_progress'"),
    )
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class MenuItem(Base):
    """Canned service with preset labor and parts pricing."""

    __tablename__ = "menu_items"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    labor_time: Mapped[float | None] = mapped_column(Float, nullable=True)
    part_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class MaintenanceService(Base):
    __tablename__ = "maintenance_services"

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    default_job_type: Mapped[str] = mapped_column(String(32), nullable=False, default="maintenance")
    default_labor_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    default_notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class MaintenanceRule(Base):
    __tablename__ = "maintenance_rules"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    service_code: Mapped[str] = mapped_column(
        ForeignKey("maintenance_services.code"),
        nullable=False,
        index=True,
    )
    make: Mapped[str | None] = mapped_column(String(64), nullable=True)
    model: Mapped[str | None] = mapped_column(String(64), nullable=True)
    year_from: Mapped[int | None] = mapped_column(Integer, nullable=True)
    year_to: Mapped[int | None] = mapped_column(Integer, nullable=True)
    engine_family: Mapped[str | None] = mapped_column(String(64), nullable=True)
    distance_km_normal: Mapped[float | None] = mapped_column(Float, nullable=True)
    distance_km_severe: Mapped[float | None] = mapped_column(Float, nullable=True)
    time_months_normal: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_months_severe: Mapped[int | None] = mapped_column(Integer, nullable=True)
    first_due_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    first_due_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    service: Mapped["MaintenanceService"] = relationship()


class MaintenanceSuggestion(Base):
    """Cached suggestion set, one row per work order."""

    __tablename__ = "maintenance_suggestions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    work_order_id: Mapped[int] = mapped_column(
        ForeignKey("work_orders.id"),
        nullable=False,
        unique=True,
        index=True,
    )
    vehicle_id: Mapped[int | None] = mapped_column(
        ForeignKey("vehicles.id"),
        nullable=True,
        index=True,
    )
    mileage_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="ready")
    suggestions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class AgentRun(Base):
    __tablename__ = "agent_runs"
    __table_args__ = (
        UniqueConstraint("shop_id", "idempotency_key", name="uq_agent_runs_idempotency"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    goal: Mapped[str] = mapped_column(Text, nullable=False)
    planner: Mapped[str] = mapped_column(String(32), nullable=False, default="simple")
    context: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="running",
        server_default=text("'running'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class AgentEvent(Base):
    __tablename__ = "agent_events"
    __table_args__ = (UniqueConstraint("run_id", "step", name="uq_agent_events_run_step"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("agent_runs.id"), nullable=False, index=True)
    step: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[Any] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class PlannerRun(Base):
    __tablename__ = "planner_runs"
    __table_args__ = (
        UniqueConstraint("shop_id", "idempotency_key", name="uq_planner_runs_idempotency"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    goal: Mapped[str] = mapped_column(Text, nullable=False)
    planner: Mapped[str] = mapped_column(String(32), nullable=False, default="openai")
    context: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="running",
        server_default=text("'running'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class PlannerEvent(Base):
    __tablename__ = "planner_events"
    __table_args__ = (UniqueConstraint("run_id", "step", name="uq_planner_events_run_step"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("planner_runs.id"), nullable=False, index=True)
    step: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[Any] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class FleetPretripReport(Base):
    __tablename__ = "fleet_pretrip_reports"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id"), nullable=False, index=True)
    driver_id: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    checklist: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False, default=dict)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    odometer_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    has_defects: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class FleetServiceRequest(Base):
    __tablename__ = "fleet_service_requests"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id"), nullable=False, index=True)
    source_pretrip_id: Mapped[int | None] = mapped_column(
        ForeignKey("fleet_pretrip_reports.id"),
        nullable=True,
        unique=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    severity: Mapped[str] = mapped_column(String(32), nullable=False, default="recommend")
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="open",
        server_default=text("'open'"),
    )
    work_order_id: Mapped[int | None] = mapped_column(ForeignKey("work_orders.id"), nullable=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class Booking(Base):
    """Portal appointment request for a time window."""

    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    customer_id: Mapped[int | None] = mapped_column(
        ForeignKey("customers.id"),
        nullable=True,
        index=True,
    )
    vehicle_id: Mapped[int | None] = mapped_column(ForeignKey("vehicles.id"), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="pending",
        server_default=text("'pending'"),
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reminder_message_sid: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    customer: Mapped[Optional["Customer"]] = relationship()


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int | None] = mapped_column(ForeignKey("shops.id"), nullable=True, index=True)
    created_by: Mapped[int] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"
    __table_args__ = (
        UniqueConstraint("conversation_id", "profile_id", name="uq_conversation_participant"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id"),
        nullable=False,
        index=True,
    )
    profile_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), nullable=False, index=True)


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id"),
        nullable=False,
        index=True,
    )
    sender_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    work_order_id: Mapped[int | None] = mapped_column(ForeignKey("work_orders.id"), nullable=True)
    stripe_session_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    platform_fee_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class ShopBoostIntake(Base):
    """Onboarding questionnaire queued for shop-health analysis."""

    __tablename__ = "shop_boost_intakes"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="pending",
        server_default=text("'pending'"),
        index=True,
    )
    questionnaire: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
