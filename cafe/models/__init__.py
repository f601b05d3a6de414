from cafe.models.user import User
from cafe.models.product import Product
from cafe.models.order import Order, OrderStatus, PaymentStatus
from cafe.models.order_item import OrderItem
