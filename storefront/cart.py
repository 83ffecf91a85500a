"""Cart mutations and the priced cart view.

Adding a product that is already in the cart adds to the existing quantity;
``update_item`` replaces it. The stock check here only reads current stock
and reserves nothing, so order placement validates again.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .errors import (
    CartEmpty,
    CartLineNotFound,
    InsufficientStock,
    InternalError,
    ProductNotFound,
    ValidationError,
)
from .models import CartItem, Product, User

logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")


@dataclass
class CartLine:
    cart_id: int
    product: Product
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return Decimal(str(self.product.price)) * self.quantity


@dataclass
class CartView:
    lines: List[CartLine]

    @property
    def total(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal("0")).quantize(CENTS)


def _require_quantity(quantity: int) -> None:
    if quantity < 1:
        raise ValidationError("quantity must be at least 1")


def _require_product(db: Session, product_id: int) -> Product:
    product = crud.get_product(db, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def _check_stock(product: Product, quantity: int) -> None:
    if quantity > product.quantity:
        raise InsufficientStock(product.id, requested=quantity, available=product.quantity)


def add_item(db: Session, user: User, product_id: int, quantity: int) -> CartItem:
    _require_quantity(quantity)
    product = _require_product(db, product_id)

    existing = crud.get_cart_item(db, user.id, product_id)
    already = existing.quantity if existing else 0
    _check_stock(product, already + quantity)

    try:
        if existing is not None:
            item = crud.increment_cart_item(db, user.id, product_id, quantity)
        else:
            try:
                item = crud.insert_cart_item(db, user.id, product_id, quantity)
            except IntegrityError:
                # Another request inserted the same line first.
                db.rollback()
                item = crud.increment_cart_item(db, user.id, product_id, quantity)
        if item is None:
            # Line vanished between the read and the increment.
            item = crud.insert_cart_item(db, user.id, product_id, quantity)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Cart write failed", user_id=user.id, product_id=product_id, error=str(e))
        raise InternalError("error adding product to cart", detail=str(e)) from e

    logger.info("Cart line added", user_id=user.id, product_id=product_id, quantity=item.quantity)
    return item


def update_item(db: Session, user: User, product_id: int, quantity: int) -> CartItem:
    _require_quantity(quantity)
    existing = crud.get_cart_item(db, user.id, product_id)
    if existing is None:
        raise CartLineNotFound(product_id)

    product = _require_product(db, product_id)
    _check_stock(product, quantity)

    try:
        item = crud.set_cart_item_quantity(db, existing, quantity)
    except SQLAlchemyError as e:
        db.rollback()
        raise InternalError("Error editing product quantity.", detail=str(e)) from e

    logger.info("Cart line updated", user_id=user.id, product_id=product_id, quantity=quantity)
    return item


def remove_item(db: Session, user: User, product_id: int) -> None:
    existing = crud.get_cart_item(db, user.id, product_id)
    if existing is None:
        raise CartLineNotFound(product_id)

    try:
        crud.delete_cart_item(db, existing)
    except SQLAlchemyError as e:
        db.rollback()
        raise InternalError(detail=str(e)) from e

    logger.info("Cart line removed", user_id=user.id, product_id=product_id)


def view_cart(db: Session, user: User) -> CartView:
    items = crud.get_cart_items(db, user.id)
    if not items:
        raise CartEmpty()
    return CartView(lines=[CartLine(cart_id=i.id, product=i.product, quantity=i.quantity) for i in items])
