# storefront/routers/catalog.py

import logging
from typing import Optional

import redis
from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from storefront import cache
from storefront.dependencies import Caller, get_kv, require_admin
from storefront.errors import ApiError, ErrorCode, envelope
from storefront.inventory import low_stock
from storefront.models import Category, Product, utc_now
from storefront.schemas import CategoryIn, CategoryRead, CategoryUpdate, ProductIn, ProductRead, ProductUpdate
from storefront.utils.db import get_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["catalog"])

PRODUCTS_NAMESPACE = "products"


def _dump(product: Product) -> dict:
    return ProductRead.model_validate(product).dump()


def _get_category(session: Session, slug: str) -> Category:
    category = session.exec(select(Category).where(Category.slug == slug)).first()
    if category is None:
        raise ApiError(ErrorCode.CATEGORY_NOT_FOUND, f"Category not found: {slug}", details={"category": slug})
    return category


def _get_product(session: Session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise ApiError(ErrorCode.PRODUCT_NOT_FOUND, f"Product not found: ID {product_id}", details={"productId": product_id})
    return product


# --- Products ---

@router.get("/products")
def list_products(
    category: Optional[str] = None,
    session: Session = Depends(get_session),
    kv: Optional[redis.Redis] = Depends(get_kv),
):
    """
    Storefront listing, served from the cache when possible.
    Any stock change invalidates it, so shoppers never see stale availability for long.
    """
    def load():
        statement = select(Product).order_by(col(Product.id))
        if category:
            statement = statement.where(Product.category == category)
        return [_dump(p) for p in session.exec(statement).all()]

    products = cache.get_or_set(kv, PRODUCTS_NAMESPACE, f"list:{category or 'all'}", load)
    return envelope({"products": products, "count": len(products)})


@router.get("/products/low-stock")
def list_low_stock(admin: Caller = Depends(require_admin), session: Session = Depends(get_session)):
    products = low_stock(session)
    return envelope({"products": [_dump(p) for p in products], "count": len(products)})


@router.get("/products/{product_id}")
def get_product(product_id: int, session: Session = Depends(get_session)):
    return envelope({"product": _dump(_get_product(session, product_id))})


@router.post("/products", status_code=201)
def create_product(
    body: ProductIn,
    admin: Caller = Depends(require_admin),
    session: Session = Depends(get_session),
    kv: Optional[redis.Redis] = Depends(get_kv),
):
    _get_category(session, body.category)
    product = Product(**body.model_dump())
    session.add(product)
    session.commit()
    session.refresh(product)
    logger.info("Product %s created by %s", product.id, admin.user_id)
    cache.invalidate_namespace(kv, PRODUCTS_NAMESPACE)
    return envelope({"product": _dump(product)}, "Product created successfully")


@router.put("/products/{product_id}")
def update_product(
    product_id: int,
    body: ProductUpdate,
    admin: Caller = Depends(require_admin),
    session: Session = Depends(get_session),
    kv: Optional[redis.Redis] = Depends(get_kv),
):
    product = _get_product(session, product_id)
    patch = body.model_dump(exclude_unset=True)
    if patch.get("category"):
        _get_category(session, patch["category"])
    for field, value in patch.items():
        setattr(product, field, value)
    product.updated_at = utc_now()
    session.add(product)
    session.commit()
    session.refresh(product)
    cache.invalidate_namespace(kv, PRODUCTS_NAMESPACE)
    return envelope({"product": _dump(product)}, "Product updated successfully")


@router.delete("/products/{product_id}")
def delete_product(
    product_id: int,
    admin: Caller = Depends(require_admin),
    session: Session = Depends(get_session),
    kv: Optional[redis.Redis] = Depends(get_kv),
):
    """Orders keep their own copy of each line, so removing a product never touches order history."""
    product = _get_product(session, product_id)
    session.delete(product)
    session.commit()
    logger.info("Product %s deleted by %s", product_id, admin.user_id)
    cache.invalidate_namespace(kv, PRODUCTS_NAMESPACE)
    return envelope({"productId": product_id}, "Product deleted successfully")


# --- Categories ---

@router.get("/categories")
def list_categories(session: Session = Depends(get_session)):
    categories = session.exec(select(Category).order_by(col(Category.name))).all()
    return envelope({"categories": [CategoryRead.model_validate(c).dump() for c in categories]})


@router.post("/categories", status_code=201)
def create_category(
    body: CategoryIn,
    admin: Caller = Depends(require_admin),
    session: Session = Depends(get_session),
):
    category = Category(**body.model_dump())
    session.add(category)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ApiError(ErrorCode.CATEGORY_ALREADY_EXISTS, details={"slug": body.slug})
    session.refresh(category)
    return envelope({"category": CategoryRead.model_validate(category).dump()}, "Category created successfully")


@router.get("/categories/{slug}")
def get_category(slug: str, session: Session = Depends(get_session)):
    return envelope({"category": CategoryRead.model_validate(_get_category(session, slug)).dump()})


@router.put("/categories/{slug}")
def update_category(
    slug: str,
    body: CategoryUpdate,
    admin: Caller = Depends(require_admin),
    session: Session = Depends(get_session),
    kv: Optional[redis.Redis] = Depends(get_kv),
):
    category = _get_category(session, slug)
    patch = body.model_dump(exclude_unset=True)
    new_slug = patch.get("slug")
    renamed = bool(new_slug) and new_slug != slug
    # products point at categories by slug, so a rename carries them along
    products = session.exec(select(Product).where(Product.category == slug)).all() if renamed else []

    for field, value in patch.items():
        setattr(category, field, value)
    category.updated_at = utc_now()
    session.add(category)
    for product in products:
        product.category = new_slug
        session.add(product)

    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ApiError(ErrorCode.CATEGORY_ALREADY_EXISTS, details={"slug": new_slug})
    session.refresh(category)
    if renamed:
        cache.invalidate_namespace(kv, PRODUCTS_NAMESPACE)
    return envelope({"category": CategoryRead.model_validate(category).dump()}, "Category updated successfully")


@router.delete("/categories/{slug}")
def delete_category(
    slug: str,
    admin: Caller = Depends(require_admin),
    session: Session = Depends(get_session),
):
    category = _get_category(session, slug)
    in_use = session.exec(select(Product.id).where(Product.category == slug)).first()
    if in_use is not None:
        raise ApiError(ErrorCode.CATEGORY_IN_USE, details={"slug": slug})
    session.delete(category)
    session.commit()
    logger.info("Category %s deleted by %s", slug, admin.user_id)
    return envelope({"slug": slug}, "Category deleted successfully")
