from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .models import CartItem, Order, Product, User


# -----------------------------
# Users
# -----------------------------

def create_user(db: Session, email: str, hashed_password: str) -> User:
    db_user = User(email=email.strip().lower(), hashed_password=hashed_password)
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    normalized = (email or "").strip().lower()
    if not normalized:
        return None
    return db.query(User).filter(User.email == normalized).first()


# -----------------------------
# Products
# -----------------------------

def get_product(db: Session, product_id: int) -> Optional[Product]:
    return db.query(Product).filter(Product.id == product_id).first()


def get_products(db: Session, skip: int = 0, limit: int = 100, search: str = None) -> List[Product]:
    query = db.query(Product)
    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                Product.name.ilike(search_pattern),
                Product.description.ilike(search_pattern),
            )
        )
    return query.order_by(Product.id).offset(skip).limit(limit).all()


# -----------------------------
# Cart
# -----------------------------

def get_cart_items(db: Session, user_id: int) -> List[CartItem]:
    return (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.product_id)
        .all()
    )


def get_cart_item(db: Session, user_id: int, product_id: int) -> Optional[CartItem]:
    return (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id, CartItem.product_id == product_id)
        .first()
    )


def insert_cart_item(db: Session, user_id: int, product_id: int, quantity: int) -> CartItem:
    db_item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
    db.add(db_item)
    db.commit()
    db.refresh(db_item)
    return db_item


def increment_cart_item(db: Session, user_id: int, product_id: int, quantity: int) -> Optional[CartItem]:
    # Single UPDATE so two concurrent adds both land.
    updated = (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id, CartItem.product_id == product_id)
        .update({CartItem.quantity: CartItem.quantity + quantity}, synchronize_session=False)
    )
    db.commit()
    if not updated:
        return None
    return (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id, CartItem.product_id == product_id)
        .first()
    )


def set_cart_item_quantity(db: Session, db_item: CartItem, quantity: int) -> CartItem:
    db_item.quantity = quantity
    db.commit()
    db.refresh(db_item)
    return db_item


def delete_cart_item(db: Session, db_item: CartItem) -> None:
    db.delete(db_item)
    db.commit()


# -----------------------------
# Orders
# -----------------------------

def get_orders_by_user(db: Session, user_id: int, skip: int = 0, limit: int = 100) -> List[Order]:
    return (
        db.query(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_user_order_count(db: Session, user_id: int) -> int:
    return db.query(Order).filter(Order.user_id == user_id).count()


def get_order_for_user(db: Session, user_id: int, order_id: int) -> Optional[Order]:
    return db.query(Order).filter(Order.id == order_id, Order.user_id == user_id).first()
