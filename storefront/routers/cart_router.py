from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import cart
from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import CartItemIn, CartLineOut, CartOut, Envelope, ProductOut

router = APIRouter(prefix="/cart", tags=["cart"])


def _line_out(cart_id: int, product, quantity: int) -> CartLineOut:
    return CartLineOut(cart_id=cart_id, product=ProductOut.model_validate(product), quantity=quantity)


@router.get("", response_model=Envelope[CartOut])
def view_cart(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    view = cart.view_cart(db, current_user)
    return Envelope[CartOut](
        message="Cart fetched successfully",
        status=200,
        data=CartOut(
            cart=[_line_out(line.cart_id, line.product, line.quantity) for line in view.lines],
            total=view.total,
        ),
    )


@router.post("", response_model=Envelope[CartLineOut])
def add_to_cart(
    body: CartItemIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    item = cart.add_item(db, current_user, product_id=body.product_id, quantity=body.quantity)
    line = _line_out(item.id, item.product, item.quantity)
    return Envelope[CartLineOut](message="product added to cart", status=200, data=line)


@router.put("", response_model=Envelope[CartLineOut])
def edit_cart(
    body: CartItemIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    item = cart.update_item(db, current_user, product_id=body.product_id, quantity=body.quantity)
    line = _line_out(item.id, item.product, item.quantity)
    return Envelope[CartLineOut](message="product quantity updated", status=200, data=line)


@router.delete("/{product_id}", response_model=Envelope[None])
def delete_from_cart(
    product_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    cart.remove_item(db, current_user, product_id=product_id)
    return Envelope[None](message="Product deleted from cart", status=200)
