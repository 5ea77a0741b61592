"""
Enum Utilities for VARCHAR-based Status Fields

CONVENTION:
━━━━━━━━━━━
• Database: VARCHAR(50) - NOT PostgreSQL ENUM
• SQLAlchemy: String(50) with Mapped[str]
• Pydantic: Python Enum for API validation
• Engine: convert the stored string back to the Enum with to_enum()
• Case: All enum values stored in UPPERCASE

DATA FLOW:
━━━━━━━━━━
INPUT (API Request):
    Pydantic Enum → .value → String → Database
    Example: PromotionType.PERCENTAGE → "PERCENTAGE" → VARCHAR

EVALUATION (Promotion engine):
    Database → String → to_enum() → exhaustive match per variant
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type, Set


T = TypeVar('T', bound=Enum)


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(PromotionStatus.ACTIVE)
        'ACTIVE'
        >>> get_enum_value("ACTIVE")
        'ACTIVE'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a string value to an enum instance.

    Returns None for unknown values so callers can treat them as
    "not applicable" instead of failing.

    Examples:
        >>> to_enum("PERCENTAGE", PromotionType)
        PromotionType.PERCENTAGE
        >>> to_enum("BOGUS", PromotionType)
        None
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except (ValueError, KeyError):
        return None


def is_status(db_value: Optional[str], enum_value: Enum) -> bool:
    """Compare a database string with an enum value."""
    if db_value is None:
        return False
    return get_enum_value(db_value) == enum_value.value


# =============================================================================
# CASE NORMALIZATION FOR PYDANTIC SCHEMAS
# =============================================================================

def normalize_to_uppercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to UPPERCASE if it's a valid enum value.

    Returns the original value otherwise so Pydantic raises the
    validation error.
    """
    if value is None:
        return value
    if isinstance(value, str):
        upper_v = value.upper()
        if upper_v in valid_values:
            return upper_v
    return value


def create_uppercase_validator(field_name: str, valid_values: Set[str]) -> classmethod:
    """
    Create a Pydantic field_validator that normalizes values to UPPERCASE.

    Usage:
        class MySchema(BaseModel):
            status: PromotionStatus

            _normalize_status = create_uppercase_validator('status', VALID_PROMOTION_STATUSES)
    """
    from pydantic import field_validator

    @field_validator(field_name, mode='before')
    @classmethod
    def validate(cls, v):
        return normalize_to_uppercase(v, valid_values)

    return validate


def normalize_code(code: Optional[str]) -> Optional[str]:
    """Coupon and promotion codes are stored stripped and UPPERCASE."""
    if code is None:
        return None
    return code.strip().upper()


# =============================================================================
# PRE-DEFINED VALID VALUE SETS
# =============================================================================

VALID_PROMOTION_TYPES = {
    "PERCENTAGE", "FIXED_AMOUNT", "FREE_SHIPPING", "BUY_X_GET_Y", "BULK_DISCOUNT"
}

VALID_PROMOTION_STATUSES = {
    "DRAFT", "SCHEDULED", "ACTIVE", "INACTIVE", "EXPIRED"
}

VALID_PROMOTION_TARGET_TYPES = {
    "ALL_PRODUCTS", "SPECIFIC_PRODUCT", "PRODUCT_CATEGORY", "CART_TOTAL",
    "CUSTOMER_SEGMENT", "FIRST_ORDER", "BULK_ORDER"
}
