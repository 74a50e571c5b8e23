"""Product catalogue endpoints.

Reads are public and go through the lenient limiter; writes require the
``admin`` role and go through the strict limiter.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_session
from storefront.dependencies.auth import require_admin
from storefront.dependencies.rate_limit import lenient_rate_limit, strict_rate_limit
from storefront.models.db import Product
from storefront.models.schemas import (
    DeleteProductResponse,
    ProductCreate,
    ProductListResponse,
    ProductResponse,
    ProductUpdate,
)
from storefront.services.sku import generate_unique_sku

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

_WRITE_DEPENDENCIES = [Depends(require_admin), Depends(strict_rate_limit)]

# Columns that may be cleared with an explicit null in an update
_NULLABLE_FIELDS = {"image_url", "brand"}


async def _get_product_or_404(session: AsyncSession, product_id: uuid.UUID) -> Product:
    product = await session.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


async def _ensure_sku_free(
    session: AsyncSession, sku: str, exclude_id: uuid.UUID | None = None
) -> None:
    stmt = select(Product.id).where(Product.sku == sku)
    if exclude_id is not None:
        stmt = stmt.where(Product.id != exclude_id)
    result = await session.execute(stmt)
    if result.scalar_one_or_none() is not None:
        raise HTTPException(status_code=409, detail="SKU already exists")


async def _commit(session: AsyncSession) -> None:
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=409, detail="SKU already exists")


# ---------------------------------------------------------------------------
# GET /api/products
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=ProductListResponse,
    summary="List products",
    dependencies=[Depends(lenient_rate_limit)],
)
async def list_products(
    category: str | None = Query(None, description="Only products in this category"),
    active_only: bool = Query(False, description="Hide inactive products"),
    session: AsyncSession = Depends(get_session),
) -> ProductListResponse:
    stmt = select(Product)
    count_stmt = select(func.count()).select_from(Product)
    if category is not None:
        stmt = stmt.where(Product.category == category.strip().lower())
        count_stmt = count_stmt.where(Product.category == category.strip().lower())
    if active_only:
        stmt = stmt.where(Product.is_active.is_(True))
        count_stmt = count_stmt.where(Product.is_active.is_(True))

    result = await session.execute(stmt.order_by(Product.created_at.desc()))
    products = result.scalars().all()
    total = (await session.execute(count_stmt)).scalar_one()

    return ProductListResponse(
        items=[ProductResponse.model_validate(p) for p in products],
        total=total,
    )


# ---------------------------------------------------------------------------
# GET /api/products/{product_id}
# ---------------------------------------------------------------------------


@router.get(
    "/{product_id}",
    response_model=ProductResponse,
    summary="Get a product",
    dependencies=[Depends(lenient_rate_limit)],
)
async def get_product(
    product_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> ProductResponse:
    product = await _get_product_or_404(session, product_id)
    return ProductResponse.model_validate(product)


# ---------------------------------------------------------------------------
# POST /api/products
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ProductResponse,
    status_code=201,
    summary="Create a product",
    dependencies=_WRITE_DEPENDENCIES,
)
async def create_product(
    body: ProductCreate,
    session: AsyncSession = Depends(get_session),
) -> ProductResponse:
    """Create a product.  A SKU is generated when the request omits one."""
    if body.sku:
        await _ensure_sku_free(session, body.sku)
        sku = body.sku
    else:
        sku = await generate_unique_sku(session)

    product = Product(id=uuid.uuid4(), **body.model_dump(exclude={"sku"}), sku=sku)
    session.add(product)
    await _commit(session)
    await session.refresh(product)

    logger.info("Product created: id=%s sku=%s", product.id, product.sku)
    return ProductResponse.model_validate(product)


# ---------------------------------------------------------------------------
# PUT /api/products/{product_id}
# ---------------------------------------------------------------------------


@router.put(
    "/{product_id}",
    response_model=ProductResponse,
    summary="Update a product",
    dependencies=_WRITE_DEPENDENCIES,
)
async def update_product(
    product_id: uuid.UUID,
    body: ProductUpdate,
    session: AsyncSession = Depends(get_session),
) -> ProductResponse:
    product = await _get_product_or_404(session, product_id)

    changes = body.model_dump(exclude_unset=True)
    for field_name, value in changes.items():
        if value is None and field_name not in _NULLABLE_FIELDS:
            continue
        if field_name == "sku" and value != product.sku:
            await _ensure_sku_free(session, value, exclude_id=product.id)
        setattr(product, field_name, value)

    await _commit(session)
    await session.refresh(product)

    logger.info("Product updated: id=%s fields=%s", product.id, sorted(changes))
    return ProductResponse.model_validate(product)


# ---------------------------------------------------------------------------
# DELETE /api/products/{product_id}
# ---------------------------------------------------------------------------


@router.delete(
    "/{product_id}",
    response_model=DeleteProductResponse,
    summary="Delete a product",
    dependencies=_WRITE_DEPENDENCIES,
)
async def delete_product(
    product_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> DeleteProductResponse:
    product = await _get_product_or_404(session, product_id)
    await session.delete(product)
    await session.commit()

    logger.info("Product deleted: id=%s", product_id)
    return DeleteProductResponse(message="Product deleted", product_id=product_id)
