# Import models so that SQLAlchemy metadata includes them on app startup
from .user import User  # noqa: F401
from .store import Store  # noqa: F401
from .product import Product  # noqa: F401
from .cart_item import CartItem  # noqa: F401
from .promotion import Promotion  # noqa: F401
from .order import Order  # noqa: F401
from .order_item import OrderItem  # noqa: F401
from .order_event import OrderEvent  # noqa: F401
