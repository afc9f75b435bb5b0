"""Read-only menu lookups used when items are added to an order."""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import List, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from .database import atomic
from .errors import ValidationError
from .models import Category, Product, utcnow

logger = logging.getLogger(__name__)

DAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def list_categories(session: Session) -> List[Category]:
    return list(session.exec(select(Category).order_by(Category.name.asc())))


def list_products(session: Session) -> List[Product]:
    return list(session.exec(select(Product).order_by(Product.name.asc())))


def get_product(session: Session, name: str) -> Product | None:
    statement = select(Product).where(
        func.lower(Product.name) == name.strip().lower(),
        Product.is_active.is_(True),
    )
    return session.exec(statement).first()


def category_name_for(session: Session, product: Product) -> str:
    category = session.get(Category, product.category_id)
    return category.name if category else "Manual"


def search_products(session: Session, term: str) -> List[Product]:
    statement = select(Product).where(Product.is_active.is_(True))
    term = term.strip().lower()
    if term:
        statement = statement.where(func.lower(Product.name).contains(term))
    return list(session.exec(statement.order_by(Product.name.asc())))


def check_availability(product: Product, today: date | None = None) -> Tuple[bool, str]:
    if product.is_available_now is False:
        return False, "Manual Toggle"
    if product.available_days:
        today = today or date.today()
        if DAY_NAMES[today.weekday()] not in product.available_days:
            return False, f"Only on {', '.join(product.available_days)}"
    return True, ""


def require_available(session: Session, name: str, today: date | None = None) -> Product:
    if not name or not name.strip():
        raise ValidationError("Item name is required")
    product = get_product(session, name)
    if product is None:
        raise ValidationError("Item not found in menu.")
    allowed, reason = check_availability(product, today)
    if not allowed:
        raise ValidationError(f"Unavailable: {reason}")
    return product


def ensure_catalog_seed(session: Session, path: str | Path) -> int:
    """Load categories and products from a JSON file into an empty catalog.

    Expected shape::

        {"categories": [{"name": "Drinks",
                         "products": [{"name": "Coke", "price": 40,
                                       "available_days": ["Sat", "Sun"]}]}]}

    Returns the number of products inserted (0 when the catalog already has data).
    """
    existing_count = session.exec(select(func.count(Product.id))).one()
    if existing_count:
        return 0
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    now = utcnow()
    inserted = 0
    with atomic(session):
        for category_data in data.get("categories", []):
            category_name = (category_data.get("name") or "").strip()
            if not category_name:
                raise ValidationError("Name cannot be empty")
            category = Category(name=category_name, is_active=True, created_at=now, updated_at=now)
            session.add(category)
            for product_data in category_data.get("products", []):
                name = (product_data.get("name") or "").strip()
                price = float(product_data.get("price", 0))
                if not name:
                    raise ValidationError("Item name is required")
                if price <= 0:
                    raise ValidationError("Price must be greater than 0")
                session.add(
                    Product(
                        category_id=category.id,
                        name=name,
                        price=price,
                        is_active=True,
                        available_days=list(product_data.get("available_days", [])),
                        is_available_now=product_data.get("is_available_now", True),
                    )
                )
                inserted += 1
    logger.info("Seeded catalog with %d products from %s", inserted, path)
    return inserted
