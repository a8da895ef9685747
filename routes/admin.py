from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import Actor, require_role, ROLE_ADMIN
from core.db import get_db
from models.promotion import Promotion
from routes.orders import csv_response
from schemas.order import AdminStatusUpdate, OrderOut
from schemas.promotion import PromotionCreate, PromotionOut
from schemas.reporting import OrderFilters, PlatformStatsOut
from services import fulfillment, promotions, reporting
from services.pricing import to_money

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/orders", response_model=List[OrderOut])
def list_all_orders(filters: OrderFilters = Depends(), actor: Actor = Depends(require_role(ROLE_ADMIN)),
                    db: Session = Depends(get_db)):
    return reporting.list_all_orders(db, filters)


@router.get("/orders/export")
def export_all_orders(filters: OrderFilters = Depends(), actor: Actor = Depends(require_role(ROLE_ADMIN)),
                      db: Session = Depends(get_db)):
    return csv_response(reporting.export_csv(reporting.list_all_orders(db, filters)), "platform-orders")


@router.patch("/orders/{order_id}/status", response_model=OrderOut)
def override_status(order_id: int, data: AdminStatusUpdate, actor: Actor = Depends(require_role(ROLE_ADMIN)),
                    db: Session = Depends(get_db)):
    return fulfillment.update_status(db, actor, order_id, data.status, data.expected_version,
                                     force=data.force, note=data.note)


@router.get("/stats", response_model=PlatformStatsOut)
def platform_stats(actor: Actor = Depends(require_role(ROLE_ADMIN)), db: Session = Depends(get_db)):
    return reporting.platform_stats(db)


@router.get("/promotions", response_model=List[PromotionOut])
def list_promotions(actor: Actor = Depends(require_role(ROLE_ADMIN)), db: Session = Depends(get_db)):
    return db.query(Promotion).order_by(Promotion.created_at.desc(), Promotion.id.desc()).all()


@router.post("/promotions", response_model=PromotionOut, status_code=201)
def create_promotion(data: PromotionCreate, actor: Actor = Depends(require_role(ROLE_ADMIN)),
                     db: Session = Depends(get_db)):
    fields = data.model_dump()
    for key in ("discount_value", "min_purchase_amount", "max_discount_amount"):
        if fields[key] is not None:
            fields[key] = to_money(fields[key])
    return promotions.create_promotion(db, **fields)
