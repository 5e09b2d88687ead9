# backend/stockledger/services/products_service.py
"""
Products Service

Minimal catalog operations. Products are referenced by id from inventory
records and invoice items; price is stored in cents.
"""
from __future__ import annotations

from ..extensions import db
from ..errors import DuplicateError, ValidationError
from ..models import Product
from ..validation import parse_money_cents


def create_product(*, sku: str, name: str, price=None, description: str | None = None) -> Product:
    sku = (sku or "").strip()
    name = (name or "").strip()
    if not sku or not name:
        raise ValidationError("sku and name are required")

    if db.session.query(Product.id).filter_by(sku=sku).first():
        raise DuplicateError(f"Product with SKU {sku} already exists")

    product = Product(
        sku=sku,
        name=name,
        description=description,
        price_cents=parse_money_cents(price, "price") if price is not None else None,
    )
    db.session.add(product)
    db.session.commit()
    return product
