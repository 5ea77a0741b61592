"""Customer and customer segment models.

Segments are admin-defined groups (e.g. "New Customers", "VIP Customers")
that promotions can be restricted to.
"""
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import String, DateTime, Text, Table, Column, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promo_engine.database import Base
from promo_engine.db_types import UUIDType, JSONType, utcnow


customer_segment_members = Table(
    "customer_segment_members",
    Base.metadata,
    Column(
        "segment_id",
        UUIDType(as_uuid=True),
        ForeignKey("customer_segments.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "customer_id",
        UUIDType(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Customer(Base):
    """Storefront customer account."""
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    segments: Mapped[List["CustomerSegment"]] = relationship(
        "CustomerSegment",
        secondary=customer_segment_members,
        back_populates="customers",
    )

    def __repr__(self) -> str:
        return f"<Customer(email='{self.email}')>"


class CustomerSegment(Base):
    """Named group of customers used for promotion targeting."""
    __tablename__ = "customer_segments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    criteria: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Informational membership criteria, e.g. {'orderCount': 0}"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    customers: Mapped[List["Customer"]] = relationship(
        "Customer",
        secondary=customer_segment_members,
        back_populates="segments",
    )

    def __repr__(self) -> str:
        return f"<CustomerSegment(name='{self.name}')>"
