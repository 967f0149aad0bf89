"""Pydantic schemas for orders.

This module exposes the request schemas validated at the API boundary, the
response schemas rendered by the views, and ``parse_payload`` which turns
pydantic validation failures into the domain ``ValidationError`` so the
core never handles raw payloads.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Type, TypeVar
from uuid import UUID

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    ValidationError as PydanticValidationError,
    field_validator,
)

from .domain import OrderLine, OrderStatus, ValidationError

DTO = TypeVar("DTO", bound=BaseModel)


def parse_payload(dto_cls: Type[DTO], payload) -> DTO:
    """Validate ``payload`` against ``dto_cls``.

    Args:
        dto_cls: Pydantic model class to validate with.
        payload: Raw request data (dict-like).

    Returns:
        The validated DTO instance.

    Raises:
        ValidationError: Domain error carrying pydantic's error list.
    """
    try:
        return dto_cls.model_validate(payload)
    except PydanticValidationError as e:
        errors = [
            {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in e.errors()
        ]
        raise ValidationError(f"Invalid {dto_cls.__name__} payload", errors=errors) from e


# ---- Requests ----
class OrderItemIn(BaseModel):
    """Input schema for a single order line item.

    Attributes:
        product_id: Positive catalog id; ``productId`` is accepted too.
        quantity: Positive integer indicating units requested.
    """

    product_id: int = Field(gt=0, validation_alias=AliasChoices("product_id", "productId"))
    quantity: int = Field(gt=0)


class CreateOrderDTO(BaseModel):
    """Schema for creating an order: at least one item."""

    items: List[OrderItemIn] = Field(min_length=1)

    def to_lines(self) -> List[OrderLine]:
        return [OrderLine(product_id=i.product_id, quantity=i.quantity) for i in self.items]


class OrderPaginationDTO(BaseModel):
    """Query parameters for listing orders."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    status: Optional[OrderStatus] = None


class ChangeOrderStatusDTO(BaseModel):
    status: OrderStatus


class PaidOrderDTO(BaseModel):
    """Payment confirmation event emitted by the payment service.

    Attributes:
        payment_id: External charge id (``paymentId``).
        order_id: UUID of the paid order (``orderId``).
        receipt_url: Receipt URL issued by the provider (``receiptUrl``).
    """

    payment_id: str = Field(min_length=1, max_length=255, validation_alias=AliasChoices("payment_id", "paymentId"))
    order_id: UUID = Field(validation_alias=AliasChoices("order_id", "orderId"))
    receipt_url: HttpUrl = Field(validation_alias=AliasChoices("receipt_url", "receiptUrl"))

    @field_validator("receipt_url")
    @classmethod
    def _receipt_url_fits_column(cls, v: HttpUrl) -> HttpUrl:
        if len(str(v)) > 500:
            raise ValueError("receipt URL must be at most 500 characters")
        return v


# ---- Responses ----
class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    quantity: int
    price: Decimal
    name: Optional[str] = None


class OrderReceiptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    receipt_url: str
    created_at: Optional[datetime] = None


class OrderSummaryOut(BaseModel):
    """Order fields shared by listings and detail responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    total_amount: Decimal
    total_items: int
    status: OrderStatus
    paid: bool
    paid_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderDetailOut(OrderSummaryOut):
    items: List[OrderItemOut]
    receipt: Optional[OrderReceiptOut] = None


class PageMetaOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    page: int
    last_page: int = Field(serialization_alias="lastPage")


class OrderPageOut(BaseModel):
    data: List[OrderSummaryOut]
    meta: PageMetaOut


class PaymentSessionOut(BaseModel):
    url: str
    success_url: str
    cancel_url: str
