"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class StockStatus(str, Enum):
    """Canonical stock status stored on products and price history."""

    IN_STOCK = "In Stock"
    OUT_OF_STOCK = "Out of Stock"
    LIMITED_STOCK = "Limited Stock"


class SyncStatus(str, Enum):
    """Sync session status. Everything but RUNNING is terminal."""

    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class LogAction(str, Enum):
    """Audit trail action for a sync log entry."""

    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Product(Base):
    """Externally-sourced catalog item owned by a reseller account."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Identity
    internal_sku: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    supplier_sku: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    supplier_asin: Mapped[str] = mapped_column(String(20), nullable=False)
    supplier_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    supplier_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Descriptive
    title: Mapped[str] = mapped_column(Text, nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    features: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    image_urls: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    rating_average: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Commercial
    supplier_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    original_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )  # Strikethrough/was price
    our_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(10), default="AUD", nullable=False)
    stock_status: Mapped[str] = mapped_column(
        String(50), default=StockStatus.IN_STOCK.value, nullable=False
    )
    stock_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Operational
    scrape_errors: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_scraped: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    price_history: Mapped[list["PriceHistory"]] = relationship(
        "PriceHistory", back_populates="product"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "supplier_asin", name="uq_product_user_asin"),
    )


class PriceHistory(Base):
    """Append-only supplier price record, written when the price changes."""

    __tablename__ = "price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id"), nullable=False, index=True
    )
    supplier_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    our_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    stock_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    product: Mapped["Product"] = relationship("Product", back_populates="price_history")


class SyncSession(Base):
    """One bulk-refresh run and its running counters."""

    __tablename__ = "sync_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=SyncStatus.RUNNING.value, nullable=False
    )
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Progress tracking
    total_products: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_products: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_products: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_products: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    started_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    log_entries: Mapped[list["SyncLogEntry"]] = relationship(
        "SyncLogEntry", back_populates="session"
    )

    @property
    def progress_percent(self) -> float:
        """Calculate progress percentage."""
        if self.total_products == 0:
            return 0.0
        return (self.processed_products / self.total_products) * 100

    @property
    def is_terminal(self) -> bool:
        return self.status != SyncStatus.RUNNING.value


class SyncLogEntry(Base):
    """Audit trail entry for a sync session."""

    __tablename__ = "sync_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_sessions.id"), nullable=False, index=True
    )
    product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)  # processing, success, error
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    session: Mapped["SyncSession"] = relationship("SyncSession", back_populates="log_entries")
