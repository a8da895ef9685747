"""Narrow read/write contract against the catalog and store tables.

The order workflow never edits products or stores directly; it goes
through these helpers so the catalog can evolve independently.
"""
import logging

from sqlalchemy import exists, select, update
from sqlalchemy.orm import Session

from core.exceptions import ProductNotFoundError
from models.order_item import OrderItem
from models.product import Product
from models.store import Store

logger = logging.getLogger(__name__)


def get_product(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).one_or_none()
    if not product:
        raise ProductNotFoundError(product_id)
    return product


def decrement_inventory(db: Session, product_id: int, quantity: int) -> bool:
    """Conditionally take ``quantity`` units out of stock.

    Runs as a single ``UPDATE ... WHERE inventory_count >= quantity`` so two
    concurrent checkouts cannot both claim the last unit. Returns False when
    the row was not updated (insufficient stock at write time).
    """
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.inventory_count >= quantity)
        .values(inventory_count=Product.inventory_count - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info("Conditional decrement refused for product %s (qty %s)", product_id, quantity)
        return False
    return True


def seller_product_ids_select(user_id: int):
    """SELECT of product ids belonging to any store owned by ``user_id``."""
    return (
        select(Product.id)
        .join(Store, Store.id == Product.store_id)
        .where(Store.owner_id == user_id)
    )


def order_belongs_to_seller(db: Session, order_id: int, user_id: int) -> bool:
    """True when the order contains at least one product from the seller's stores."""
    return db.query(
        exists().where(
            OrderItem.order_id == order_id,
            OrderItem.product_id.in_(seller_product_ids_select(user_id)),
        )
    ).scalar()
