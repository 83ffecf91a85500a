from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..crud import get_product, get_products
from ..database import get_db
from ..errors import ProductNotFound
from ..models import User
from ..schemas import Envelope, ProductOut

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=Envelope[List[ProductOut]])
def view_products(
    skip: int = Query(0, ge=0, description="**Skip** number of products"),
    limit: int = Query(100, ge=1, le=1000, description="**Limit** number of products"),
    search: Optional[str] = Query(None, description="**Search** in name or description"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    products = get_products(db, skip=skip, limit=limit, search=search)
    return Envelope[List[ProductOut]](
        message="Success",
        status=200,
        data=[ProductOut.model_validate(p) for p in products],
    )


@router.get("/{product_id}", response_model=Envelope[ProductOut])
def view_product(
    product_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    product = get_product(db, product_id)
    if not product:
        raise ProductNotFound(product_id)
    return Envelope[ProductOut](message="Success", status=200, data=ProductOut.model_validate(product))
