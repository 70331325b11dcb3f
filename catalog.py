import logging
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models import Category, Product
from schemas import CategoryCreate, CategoryOut, CategoryUpdate, ProductCreate, ProductOut, ProductUpdate

log = logging.getLogger(__name__)

NULLABLE_PRODUCT_FIELDS = ("description", "category_id")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


# ---------- Products ----------

def list_products(db: Session, category_id: Optional[int] = None, featured: Optional[bool] = None):
    query = select(Product).where(Product.is_active.is_(True))
    if category_id:
        query = query.where(Product.category_id == category_id)
    if featured is not None:
        query = query.where(Product.featured.is_(featured))
    return db.scalars(query.order_by(Product.created_at.desc(), Product.id.desc())).unique().all()


def get_product(db: Session, product_id: int) -> Product:
    product = db.scalar(select(Product).where(Product.id == product_id, Product.is_active.is_(True)))
    if not product:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product


def get_product_by_slug(db: Session, slug: str) -> Product:
    product = db.scalar(select(Product).where(Product.slug == slug, Product.is_active.is_(True)))
    if not product:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product


def _check_category(db: Session, category_id: Optional[int]):
    if category_id is not None and db.get(Category, category_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")


def create_product(db: Session, body: ProductCreate) -> Product:
    if db.scalar(select(Product.id).where(Product.slug == body.slug)) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Slug already in use")
    _check_category(db, body.category_id)
    data = body.model_dump()
    data["price"] = _money(data["price"])
    product = Product(**data)
    db.add(product)
    db.commit()
    log.info("Created product %s (%s)", product.id, product.slug)
    return product


def update_product(db: Session, product_id: int, body: ProductUpdate) -> Product:
    # inactive products can be edited too, that is how they get restored
    product = db.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    changes = body.model_dump(exclude_unset=True)
    if "category_id" in changes:
        _check_category(db, changes["category_id"])
    if changes.get("price") is not None:
        changes["price"] = _money(changes["price"])
    for key, value in changes.items():
        # only these columns may be cleared
        if value is not None or key in NULLABLE_PRODUCT_FIELDS:
            setattr(product, key, value)
    db.commit()
    return product


def remove_product(db: Session, product_id: int) -> Product:
    product = get_product(db, product_id)
    product.is_active = False
    db.commit()
    log.info("Deactivated product %s", product_id)
    return product


# ---------- Categories ----------

def category_out(category: Category) -> CategoryOut:
    return CategoryOut(
        id=category.id,
        name=category.name,
        slug=category.slug,
        description=category.description,
        image_url=category.image_url,
        products=[ProductOut.model_validate(p) for p in category.products if p.is_active],
    )


def list_categories(db: Session):
    return [category_out(c) for c in db.scalars(select(Category).order_by(Category.name)).all()]


def get_category(db: Session, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    return category


def _check_slug(db: Session, slug: str, exclude_id: Optional[int] = None):
    existing = db.scalar(select(Category.id).where(Category.slug == slug))
    if existing is not None and existing != exclude_id:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Slug already in use")


def create_category(db: Session, body: CategoryCreate) -> Category:
    _check_slug(db, body.slug)
    category = Category(**body.model_dump())
    db.add(category)
    db.commit()
    return category


def update_category(db: Session, category_id: int, body: CategoryUpdate) -> Category:
    category = get_category(db, category_id)
    changes = body.model_dump(exclude_unset=True)
    if changes.get("slug"):
        _check_slug(db, changes["slug"], exclude_id=category_id)
    for key, value in changes.items():
        if value is not None or key in ("description", "image_url"):
            setattr(category, key, value)
    db.commit()
    return category


def remove_category(db: Session, category_id: int) -> None:
    category = get_category(db, category_id)
    # products outlive their category
    db.execute(update(Product).where(Product.category_id == category_id).values(category_id=None))
    db.delete(category)
    db.commit()
    log.info("Deleted category %s", category_id)
