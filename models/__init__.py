# Import models so that SQLAlchemy metadata includes them on app startup
from .product import Product  # noqa: F401
from .review import Review  # noqa: F401
from .order import Order  # noqa: F401
from .order_product import OrderProduct  # noqa: F401
