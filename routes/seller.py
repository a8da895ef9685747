from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import Actor, require_role, ROLE_SELLER
from core.db import get_db
from routes.orders import csv_response
from schemas.order import OrderOut
from schemas.reporting import OrderFilters, SellerAnalyticsOut
from services import reporting

router = APIRouter(prefix="/seller", tags=["seller"])


@router.get("/orders", response_model=List[OrderOut])
def list_seller_orders(filters: OrderFilters = Depends(), actor: Actor = Depends(require_role(ROLE_SELLER)),
                       db: Session = Depends(get_db)):
    return reporting.list_seller_orders(db, actor.user_id, filters)


@router.get("/orders/export")
def export_seller_orders(filters: OrderFilters = Depends(), actor: Actor = Depends(require_role(ROLE_SELLER)),
                         db: Session = Depends(get_db)):
    orders = reporting.list_seller_orders(db, actor.user_id, filters)
    return csv_response(reporting.export_csv(orders), "seller-orders")


@router.get("/analytics", response_model=SellerAnalyticsOut)
def seller_analytics(actor: Actor = Depends(require_role(ROLE_SELLER)), db: Session = Depends(get_db)):
    return reporting.seller_analytics(db, actor.user_id)
