from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from core.auth import Actor, get_current_actor
from core.db import get_db
from core.exceptions import ProductUnavailableError
from models.cart_item import CartItem
from schemas.cart import CartItemIn, CartItemUpdate, CartOut
from services import catalog
from services.checkout import load_cart
from services.pricing import to_money

router = APIRouter(prefix="/cart", tags=["cart"])


def _cart_out(items) -> dict:
    rows = []
    subtotal = Decimal("0.00")
    for item in items:
        price = to_money(item.product.price)
        line_total = price * item.quantity
        subtotal += line_total
        rows.append({
            "id": item.id,
            "product_id": item.product_id,
            "product_name": item.product.name,
            "unit_price": price,
            "quantity": item.quantity,
            "line_total": line_total,
            "in_stock": item.product.is_active and item.product.inventory_count >= item.quantity,
        })
    return {"items": rows, "subtotal": subtotal}


@router.get("/", response_model=CartOut)
def get_cart(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return _cart_out(load_cart(db, actor.user_id))


@router.post("/items", response_model=CartOut, status_code=201)
def add_item(data: CartItemIn, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    product = catalog.get_product(db, data.product_id)
    if not product.is_active:
        raise ProductUnavailableError(product.name)

    item = db.query(CartItem).filter(
        CartItem.user_id == actor.user_id, CartItem.product_id == product.id
    ).one_or_none()
    if item:
        item.quantity += data.quantity
    else:
        db.add(CartItem(user_id=actor.user_id, product_id=product.id, quantity=data.quantity))
    db.commit()
    return _cart_out(load_cart(db, actor.user_id))


@router.patch("/items/{item_id}", response_model=CartOut)
def update_item(item_id: int, data: CartItemUpdate, actor: Actor = Depends(get_current_actor),
                db: Session = Depends(get_db)):
    item = db.query(CartItem).filter(CartItem.id == item_id, CartItem.user_id == actor.user_id).one_or_none()
    if not item:
        raise HTTPException(status_code=404, detail="Cart item not found")
    item.quantity = data.quantity
    db.commit()
    return _cart_out(load_cart(db, actor.user_id))


@router.delete("/items/{item_id}", status_code=204)
def remove_item(item_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    item = db.query(CartItem).filter(CartItem.id == item_id, CartItem.user_id == actor.user_id).one_or_none()
    if not item:
        raise HTTPException(status_code=404, detail="Cart item not found")
    db.delete(item)
    db.commit()
    return None
