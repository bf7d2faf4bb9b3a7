from models.user import User, Profile
from models.order import Order, OrderStatus, Network, TERMINAL_STATUSES
from models.order_receipt import OrderReceipt
from models.order_timeline import OrderTimeline, EventType, ActorType

__all__ = [
    "User",
    "Profile",
    "Order",
    "OrderStatus",
    "Network",
    "TERMINAL_STATUSES",
    "OrderReceipt",
    "OrderTimeline",
    "EventType",
    "ActorType",
]
