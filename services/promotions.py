import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import update, or_
from sqlalchemy.orm import Session

from core.exceptions import InvalidInputError
from models.promotion import Promotion, DISCOUNT_PERCENTAGE, DISCOUNT_FIXED
from services.pricing import to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromotionResult:
    valid: bool
    discount_amount: Decimal
    message: str
    promotion: Optional[Promotion] = None


def _reject(message: str) -> PromotionResult:
    return PromotionResult(valid=False, discount_amount=Decimal("0.00"), message=message)


def find_promotion(db: Session, code: str) -> Optional[Promotion]:
    return db.query(Promotion).filter(Promotion.code == Promotion.normalize_code(code)).one_or_none()


def evaluate(db: Session, code: str, cart_total: Decimal, now: Optional[datetime] = None) -> PromotionResult:
    """Price ``code`` against ``cart_total`` without consuming it.

    Usage is only counted by ``redeem`` when a checkout commits.
    """
    now = now or datetime.utcnow()
    cart_total = to_money(cart_total)

    if not code or not code.strip():
        return _reject("Please enter a promo code")

    promotion = find_promotion(db, code)
    if not promotion:
        return _reject("This promo code does not exist")
    if not promotion.is_active:
        return _reject("This promo code is no longer active")
    if promotion.valid_from and now < promotion.valid_from:
        return _reject("This promo code is not valid yet")
    if promotion.valid_until and now > promotion.valid_until:
        return _reject("This promo code has expired")
    if promotion.usage_limit is not None and promotion.usage_count >= promotion.usage_limit:
        return _reject("This promo code has reached its usage limit")

    min_purchase = to_money(promotion.min_purchase_amount or 0)
    if cart_total < min_purchase:
        return _reject(f"A minimum purchase of {min_purchase} is required for this promo code")

    value = to_money(promotion.discount_value)
    if promotion.discount_type == DISCOUNT_PERCENTAGE:
        discount = to_money(cart_total * value / Decimal("100"))
        if promotion.max_discount_amount is not None:
            discount = min(discount, to_money(promotion.max_discount_amount))
    elif promotion.discount_type == DISCOUNT_FIXED:
        discount = value
    else:
        logger.warning("Promotion %s has unknown discount type %r", promotion.code, promotion.discount_type)
        return _reject("This promo code cannot be applied")

    discount = max(Decimal("0.00"), min(discount, cart_total))
    return PromotionResult(
        valid=True,
        discount_amount=discount,
        message=f"Promo code applied: {discount} off",
        promotion=promotion,
    )


def redeem(db: Session, promotion_id: int) -> bool:
    """Count one use of a promotion, refusing once the usage limit is reached.

    Must run inside the checkout unit of work so the increment commits or
    rolls back together with the order.
    """
    result = db.execute(
        update(Promotion)
        .where(
            Promotion.id == promotion_id,
            or_(Promotion.usage_limit.is_(None), Promotion.usage_count < Promotion.usage_limit),
        )
        .values(usage_count=Promotion.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def create_promotion(db: Session, **fields) -> Promotion:
    code = Promotion.normalize_code(fields.pop("code"))
    if not code:
        raise InvalidInputError("Promo code is required")
    if find_promotion(db, code):
        raise InvalidInputError(f"Promo code {code} already exists")
    if fields.get("discount_type") not in (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED):
        raise InvalidInputError("discount_type must be 'percentage' or 'fixed'")
    if fields["discount_type"] == DISCOUNT_PERCENTAGE and fields.get("discount_value", 0) > 100:
        raise InvalidInputError("A percentage discount cannot exceed 100")
    valid_from = fields.get("valid_from")
    valid_until = fields.get("valid_until")
    if valid_from and valid_until and valid_until < valid_from:
        raise InvalidInputError("valid_until must be after valid_from")
    if fields.get("valid_from") is None:
        fields.pop("valid_from", None)

    promotion = Promotion(code=code, **fields)
    db.add(promotion)
    db.commit()
    db.refresh(promotion)
    logger.info("Promotion %s created", code)
    return promotion
