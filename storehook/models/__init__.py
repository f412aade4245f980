# Models package — import all models here so Alembic can discover them.

from storehook.models.webhook_event import WebhookEvent  # noqa: F401
from storehook.models.customer import Customer  # noqa: F401
from storehook.models.checkout import Checkout, CheckoutItem  # noqa: F401
from storehook.models.order import Order, OrderItem, OrderEvent  # noqa: F401
from storehook.models.refund import Refund  # noqa: F401
