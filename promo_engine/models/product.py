"""Product model - the catalog entries cart lines refer to."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, DateTime, ForeignKey, Numeric, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promo_engine.database import Base
from promo_engine.db_types import UUIDType, utcnow

if TYPE_CHECKING:
    from promo_engine.models.category import Category


class Product(Base):
    """
    Catalog product.

    Only the fields the promotion engine reads are modelled here: the
    category (for category targeting) and the list price.
    """
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    category: Mapped[Optional["Category"]] = relationship("Category", back_populates="products")

    def __repr__(self) -> str:
        return f"<Product(name='{self.name}', price={self.price})>"
