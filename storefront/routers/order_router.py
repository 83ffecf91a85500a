from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import crud
from ..auth import get_current_user
from ..database import get_db
from ..errors import OrderNotFound
from ..fulfillment import place_order
from ..models import User
from ..schemas import Envelope, OrderListOut, OrderOut

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=Envelope[OrderOut])
def create_order(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Place an order from everything currently in the caller's cart."""
    db_order = place_order(db, current_user.id)
    return Envelope[OrderOut](message="Order placed successfully", status=200, data=OrderOut.model_validate(db_order))


@router.get("", response_model=Envelope[OrderListOut])
def order_history(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    orders = crud.get_orders_by_user(db, user_id=current_user.id, skip=skip, limit=limit)
    total = crud.get_user_order_count(db, user_id=current_user.id)
    return Envelope[OrderListOut](
        message="Orders fetched",
        status=200,
        data=OrderListOut(
            orders=[OrderOut.model_validate(o) for o in orders],
            total=total,
            skip=skip,
            limit=limit,
        ),
    )


@router.get("/{order_id}", response_model=Envelope[OrderOut])
def get_order(order_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    db_order = crud.get_order_for_user(db, user_id=current_user.id, order_id=order_id)
    if db_order is None:
        raise OrderNotFound(detail={"order_id": order_id})
    return Envelope[OrderOut](message="Success", status=200, data=OrderOut.model_validate(db_order))
