"""
Order lifecycle emails.

Sent after the order change is committed. A delivery failure is logged
and handed back to the caller as a warning string; it never raises.
"""

from typing import Optional

from jinja2 import DictLoader, Environment, select_autoescape

from storefront_orders.core.logging_config import get_logger
from storefront_orders.domain.errors import NotificationError
from storefront_orders.domain.order import Order

logger = get_logger(__name__)

_BASE = """<!DOCTYPE html>
<html>
<head>
  <style>
    body { font-family: 'Courier New', monospace; background: #0a0a0a; color: #00ffff; padding: 20px; }
    .container { max-width: 600px; margin: 0 auto; background: #1a1a1a; border: 2px solid #00ffff; padding: 30px; }
    .header { text-align: center; font-size: 28px; font-weight: bold; margin-bottom: 20px; }
    table { width: 100%; border-collapse: collapse; }
    td { padding: 6px 0; }
    .total { font-weight: bold; border-top: 1px solid #00ffff; }
    .footer { margin-top: 30px; font-size: 12px; color: #666; text-align: center; }
  </style>
</head>
<body>
  <div class="container">
    <div class="header">VOID VENDOR</div>
    <p>Hello {{ order.customer_name or "there" }},</p>
    {% block body %}{% endblock %}
    <table>
      {% for item in order.items %}
      <tr><td>{{ item.icon }} {{ item.name }} &times; {{ item.quantity }}</td><td align="right">${{ "%.2f"|format(item.subtotal) }}</td></tr>
      {% endfor %}
      <tr class="total"><td>Total</td><td align="right">${{ "%.2f"|format(order.total) }}</td></tr>
    </table>
    <p><a href="{{ frontend_url }}/orders/{{ order.id }}">View your order</a></p>
    <div class="footer">
      <p>VOID VENDOR - Transmissions from the Digital Abyss</p>
    </div>
  </div>
</body>
</html>
"""

_TEMPLATES = {
    "base.html": _BASE,
    "order_placed.html": """{% extends "base.html" %}{% block body %}
    <p>We received your order <strong>{{ order.order_number }}</strong>.
    It will be processed as soon as payment is confirmed.</p>
{% endblock %}""",
    "payment_confirmed.html": """{% extends "base.html" %}{% block body %}
    <p>Payment for order <strong>{{ order.order_number }}</strong> is confirmed.
    Your downloads are now available.</p>
    {% if order.payment_intent_id %}<p>Payment reference: {{ order.payment_intent_id }}</p>{% endif %}
{% endblock %}""",
}


class OrderNotifier:
    def __init__(self, mailer, frontend_url: str = ""):
        self.mailer = mailer
        self.frontend_url = frontend_url.rstrip("/")
        self.env = Environment(
            loader=DictLoader(_TEMPLATES),
            autoescape=select_autoescape(default=True),
        )

    def render(self, template: str, order: Order) -> str:
        return self.env.get_template(template).render(order=order, frontend_url=self.frontend_url)

    async def order_placed(self, order: Order) -> Optional[str]:
        return await self._send(
            "order_placed",
            order,
            f"Void Vendor - Order {order.order_number} received",
            "order_placed.html",
        )

    async def payment_confirmed(self, order: Order) -> Optional[str]:
        return await self._send(
            "payment_confirmed",
            order,
            f"Void Vendor - Payment confirmed for {order.order_number}",
            "payment_confirmed.html",
        )

    async def _send(self, event: str, order: Order, subject: str, template: str) -> Optional[str]:
        if not order.customer_email:
            logger.info(
                f"No contact email for order {order.id}, skipping {event} email",
                extra={"extra_fields": {"order_id": order.id, "event": event}},
            )
            return None
        try:
            await self.mailer.send(order.customer_email, subject, self.render(template, order))
        except NotificationError as e:
            logger.error(
                f"Failed to send {event} email for order {order.id}",
                exc_info=True,
                extra={"extra_fields": {"order_id": order.id, "event": event}},
            )
            return f"{event} email was not delivered: {e.message}"
        except Exception as e:
            # Template or transport failures are reported, never raised
            logger.error(
                f"Unexpected error sending {event} email for order {order.id}",
                exc_info=True,
                extra={"extra_fields": {"order_id": order.id, "event": event}},
            )
            return f"{event} email was not delivered: {e}"
        return None
