"""Pydantic request / response schemas for the storefront services."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Product schemas
# ---------------------------------------------------------------------------


class _ProductFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("category", check_fields=False)
    @classmethod
    def lowercase_category(cls, v: str | None) -> str | None:
        return v.lower() if v is not None else v

    @field_validator("sku", check_fields=False)
    @classmethod
    def uppercase_sku(cls, v: str | None) -> str | None:
        return v.upper() if v else None


class ProductCreate(_ProductFields):
    name: str = Field(..., min_length=2, max_length=200)
    description: str = Field(..., min_length=10, max_length=2000)
    price: float = Field(..., ge=0)
    stock: int = Field(default=0, ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    image_url: str | None = Field(default=None, max_length=500)
    sku: str | None = Field(default=None, max_length=64)
    brand: str | None = Field(default=None, max_length=100)
    is_active: bool = True
    rating: float = Field(default=0, ge=0, le=5)
    review_count: int = Field(default=0, ge=0)


class ProductUpdate(_ProductFields):
    """Partial update; only fields present in the request body are applied."""

    name: str | None = Field(default=None, min_length=2, max_length=200)
    description: str | None = Field(default=None, min_length=10, max_length=2000)
    price: float | None = Field(default=None, ge=0)
    stock: int | None = Field(default=None, ge=0)
    category: str | None = Field(default=None, min_length=1, max_length=100)
    image_url: str | None = Field(default=None, max_length=500)
    sku: str | None = Field(default=None, max_length=64)
    brand: str | None = Field(default=None, max_length=100)
    is_active: bool | None = None
    rating: float | None = Field(default=None, ge=0, le=5)
    review_count: int | None = Field(default=None, ge=0)


class ProductResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: str
    price: float
    stock: int
    category: str
    image_url: str | None
    sku: str
    brand: str | None
    is_active: bool
    is_available: bool
    rating: float
    review_count: int
    created_at: datetime
    updated_at: datetime


class ProductListResponse(BaseModel):
    items: list[ProductResponse]
    total: int


class DeleteProductResponse(BaseModel):
    message: str
    product_id: uuid.UUID


# ---------------------------------------------------------------------------
# Health schema
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    service: str
