from .user import User
from .farm import Farm, Product
from .subscription import Subscription
from .order import Order
from .payment import Transaction, PaymentMethod
from .notification import NotificationPreference, Notification
