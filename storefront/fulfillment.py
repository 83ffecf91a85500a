"""Turns a user's cart into a placed order in one transaction.

Stock is taken with a conditional decrement
(``UPDATE products SET quantity = quantity - n WHERE id = :id AND quantity >= n``).
If any line's decrement matches no row, the whole order is rolled back and
reported as ``InsufficientStock``. Product rows are also read
``FOR UPDATE`` in id order, which serializes competing orders on backends
that support row locks. The conditional decrement alone keeps stock from
going negative, including on SQLite where ``FOR UPDATE`` is ignored.

Cart lines are read FOR UPDATE too, and only the lines that were read are
cleared. A line added or edited while the order is being placed stays in
the cart, or aborts the order with ``CartChanged`` if it was one of the
lines being ordered.

Nothing is retried: the client places the order again if it wants to.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List

import structlog
from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import CartChanged, EmptyCart, InsufficientStock, InternalError, ProductNotFound, StorefrontError
from .models import CartItem, Order, OrderItem, OrderStatus, Product

logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


def _snapshot_cart(db: Session, user_id: int) -> List[CartItem]:
    return (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.product_id)
        .with_for_update(of=CartItem)
        .all()
    )


def _clear_snapshot(db: Session, user_id: int, cart_items: List[CartItem]) -> None:
    """Delete exactly the snapshotted lines, at the snapshotted quantities."""
    deleted = (
        db.query(CartItem)
        .filter(
            CartItem.user_id == user_id,
            or_(*[and_(CartItem.id == item.id, CartItem.quantity == item.quantity) for item in cart_items]),
        )
        .delete(synchronize_session=False)
    )
    if deleted != len(cart_items):
        raise CartChanged(detail={"expected": len(cart_items), "cleared": deleted})


def _lock_products(db: Session, product_ids: List[int]) -> Dict[int, Product]:
    # Stable order avoids deadlocks between orders sharing products.
    products = (
        db.query(Product)
        .filter(Product.id.in_(product_ids))
        .order_by(Product.id)
        .with_for_update()
        .all()
    )
    return {p.id: p for p in products}


def price_lines(cart_items: List[CartItem], products: Dict[int, Product]) -> List[PricedLine]:
    """Validate each line against current stock and fix its unit price."""
    lines = []
    for item in cart_items:
        product = products.get(item.product_id)
        if product is None:
            raise ProductNotFound(item.product_id)
        if item.quantity > product.quantity:
            raise InsufficientStock(product.id, requested=item.quantity, available=product.quantity)
        lines.append(
            PricedLine(
                product_id=product.id,
                product_name=product.name,
                quantity=item.quantity,
                unit_price=Decimal(str(product.price)).quantize(CENTS),
            )
        )
    return lines


def _decrement_stock(db: Session, line: PricedLine) -> None:
    result = db.execute(
        update(Product)
        .where(Product.id == line.product_id, Product.quantity >= line.quantity)
        .values(quantity=Product.quantity - line.quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = db.query(Product.quantity).filter(Product.id == line.product_id).scalar()
        raise InsufficientStock(line.product_id, requested=line.quantity, available=available or 0)


def place_order(db: Session, user_id: int) -> Order:
    try:
        cart_items = _snapshot_cart(db, user_id)
        if not cart_items:
            raise EmptyCart(detail="No items in the cart")

        products = _lock_products(db, [item.product_id for item in cart_items])
        lines = price_lines(cart_items, products)
        total = sum((line.subtotal for line in lines), Decimal("0")).quantize(CENTS)

        for line in lines:
            _decrement_stock(db, line)

        db_order = Order(user_id=user_id, total_amount=total, status=OrderStatus.PLACED.value)
        db.add(db_order)
        db.flush()  # Get order ID without committing

        for line in lines:
            db.add(
                OrderItem(
                    order_id=db_order.id,
                    product_id=line.product_id,
                    product_name=line.product_name,
                    quantity=line.quantity,
                    price=line.unit_price,
                )
            )

        _clear_snapshot(db, user_id, cart_items)
        db.commit()
    except StorefrontError as e:
        db.rollback()
        logger.info("Order rejected", user_id=user_id, reason=type(e).__name__, detail=e.detail)
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Order commit failed", user_id=user_id, error=str(e))
        raise InternalError("Error creating order", detail=str(e)) from e
    except BaseException:
        # Timeouts and cancellation included.
        db.rollback()
        raise

    db.refresh(db_order)
    logger.info("Order placed", user_id=user_id, order_id=db_order.id, total=str(total), lines=len(lines))
    return db_order
