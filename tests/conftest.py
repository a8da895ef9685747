from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from core.auth import resolve_actor
from models.cart_item import CartItem
from models.product import Product
from models.promotion import Promotion
from models.store import Store
from models.user import User
from security import jwt as jwt_utils
from services import checkout as checkout_service
from services import email as email_service

SHIPPING_ADDRESS = "Jane Buyer\n5551234567\n12 Market Street, Apt 3\nSpringfield, 12345"


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    sent = []

    def _fake_send(to_email: str, subject: str, body: str) -> None:
        sent.append({"to": to_email, "subject": subject, "body": body})

    monkeypatch.setattr(email_service, "send_email", _fake_send)
    return sent


def _user(db, email, full_name, is_superadmin=False):
    user = User(email=email, full_name=full_name, is_superadmin=is_superadmin)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def buyer(db):
    return _user(db, "buyer@example.com", "Jane Buyer")


@pytest.fixture
def other_buyer(db):
    return _user(db, "other.buyer@example.com", "Otto Buyer")


@pytest.fixture
def seller(db):
    return _user(db, "seller@example.com", "Sam Seller")


@pytest.fixture
def other_seller(db):
    return _user(db, "rival@example.com", "Rita Rival")


@pytest.fixture
def admin(db):
    return _user(db, "admin@example.com", "Ada Admin", is_superadmin=True)


@pytest.fixture
def store(db, seller):
    store = Store(name="Sam's Goods", owner_id=seller.id)
    db.add(store)
    db.commit()
    db.refresh(store)
    return store


@pytest.fixture
def other_store(db, other_seller):
    store = Store(name="Rival Goods", owner_id=other_seller.id)
    db.add(store)
    db.commit()
    db.refresh(store)
    return store


def _product(db, store, name, price, inventory):
    product = Product(store_id=store.id, name=name, price=Decimal(price), inventory_count=inventory, is_active=True)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def product_a(db, store):
    return _product(db, store, "Ceramic Mug", "10.00", 10)


@pytest.fixture
def product_b(db, store):
    return _product(db, store, "Linen Towel", "25.50", 3)


@pytest.fixture
def rival_product(db, other_store):
    return _product(db, other_store, "Rival Teapot", "40.00", 5)


@pytest.fixture
def buyer_actor(db, buyer):
    return resolve_actor(db, buyer)


@pytest.fixture
def other_buyer_actor(db, other_buyer):
    return resolve_actor(db, other_buyer)


@pytest.fixture
def seller_actor(db, seller, store):
    return resolve_actor(db, seller)


@pytest.fixture
def other_seller_actor(db, other_seller, other_store):
    return resolve_actor(db, other_seller)


@pytest.fixture
def admin_actor(db, admin):
    return resolve_actor(db, admin)


def headers_for(user):
    return {"Authorization": f"Bearer {jwt_utils.create_access_token(str(user.id))}"}


@pytest.fixture
def buyer_headers(buyer):
    return headers_for(buyer)


@pytest.fixture
def other_buyer_headers(other_buyer):
    return headers_for(other_buyer)


@pytest.fixture
def seller_headers(seller, store):
    return headers_for(seller)


@pytest.fixture
def other_seller_headers(other_seller, other_store):
    return headers_for(other_seller)


@pytest.fixture
def admin_headers(admin):
    return headers_for(admin)


@pytest.fixture
def add_to_cart(db):
    def _add(user, product, quantity=1):
        item = CartItem(user_id=user.id, product_id=product.id, quantity=quantity)
        db.add(item)
        db.commit()
        return item
    return _add


@pytest.fixture
def place_order(db, add_to_cart):
    """Fill the buyer's cart with (product, quantity) pairs and check out."""
    def _place(actor, user, lines, promo_code=None):
        for product, quantity in lines:
            add_to_cart(user, product, quantity)
        return checkout_service.checkout(db, actor, SHIPPING_ADDRESS, promo_code)
    return _place


@pytest.fixture
def make_promotion(db):
    def _make(code="SAVE5", discount_type="fixed", discount_value="5", min_purchase_amount="0", **extra):
        promotion = Promotion(
            code=Promotion.normalize_code(code),
            discount_type=discount_type,
            discount_value=Decimal(discount_value),
            min_purchase_amount=Decimal(min_purchase_amount),
            valid_from=extra.pop("valid_from", datetime.utcnow() - timedelta(days=1)),
            **extra,
        )
        db.add(promotion)
        db.commit()
        db.refresh(promotion)
        return promotion
    return _make
