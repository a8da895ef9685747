from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import Actor, get_current_actor
from core.db import get_db
from schemas.promotion import PromotionEvaluateRequest, PromotionEvaluateResponse
from services import promotions

router = APIRouter(prefix="/promotions", tags=["promotions"])


@router.post("/evaluate", response_model=PromotionEvaluateResponse)
def evaluate_promotion(data: PromotionEvaluateRequest, actor: Actor = Depends(get_current_actor),
                       db: Session = Depends(get_db)):
    """Preview a promo code. Does not count as a use of the code."""
    result = promotions.evaluate(db, data.code, data.cart_total)
    return {"valid": result.valid, "discount_amount": result.discount_amount, "message": result.message}
