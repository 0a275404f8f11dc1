import json
from typing import Dict

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from storefront_orders.application.notifications import OrderNotifier
from storefront_orders.application.service import OrderService
from storefront_orders.context import OrdersContext
from storefront_orders.core_settings import Settings
from storefront_orders.domain.errors import NotificationError
from storefront_orders.infrastructure.clients import CatalogClient, UserDirectoryClient
from storefront_orders.infrastructure.db import build_engine, build_session_factory, init_models
from storefront_orders.main import create_app

JWT_SECRET = "test-secret"


class CatalogStub:
    """In-memory catalog service answering through httpx.MockTransport"""

    def __init__(self):
        self.products: Dict[str, dict] = {}
        self.adjustments = []
        self.reject = set()

    def add(self, product_id, name, price, stock, icon="🎛️"):
        self.products[product_id] = {
            "id": product_id, "name": name, "price": price, "stock": stock, "icon": icon,
        }

    def stock(self, product_id) -> int:
        return self.products[product_id]["stock"]

    def handle(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.strip("/").split("/")
        if len(parts) < 2 or parts[0] != "products" or parts[1] not in self.products:
            return httpx.Response(404, json={"success": False, "error": "Product not found"})
        product = self.products[parts[1]]
        if request.method == "GET" and len(parts) == 2:
            return httpx.Response(200, json={"success": True, "data": product})
        if request.method == "POST" and parts[2:] == ["stock"]:
            delta = json.loads(request.content)["delta"]
            if parts[1] in self.reject or product["stock"] + delta < 0:
                return httpx.Response(409, json={"success": False, "error": "Insufficient stock"})
            product["stock"] += delta
            self.adjustments.append((parts[1], delta))
            return httpx.Response(200, json={"success": True, "data": product})
        return httpx.Response(405)


def users_handler(request: httpx.Request) -> httpx.Response:
    user_id = request.url.path.rstrip("/").split("/")[-1]
    if user_id == "ghost":
        return httpx.Response(404, json={"success": False})
    return httpx.Response(200, json={"id": user_id, "email": f"{user_id}@example.com", "name": f"User {user_id}"})


class RecordingMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, to, subject, html, text=None):
        if self.fail:
            raise NotificationError("SMTP connection refused")
        self.sent.append({"to": to, "subject": subject, "html": html})


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite:///:memory:",
        JWT_SECRET=JWT_SECRET,
        SMTP_ENABLED=False,
        RUN_MIGRATIONS=False,
    )


@pytest.fixture
def engine(settings):
    engine = build_engine(settings.database_url)
    init_models(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def catalog_stub():
    stub = CatalogStub()
    stub.add("p-reverb", "Abyss Reverb", 10.0, 10, icon="🌌")
    stub.add("p-delay", "Void Delay", 5.0, 3)
    stub.add("p-free", "Static Noise", 0, 100)
    return stub


@pytest.fixture
def catalog(catalog_stub):
    client = CatalogClient("http://catalog.test", transport=httpx.MockTransport(catalog_stub.handle))
    yield client
    client.close()


@pytest.fixture
def users():
    client = UserDirectoryClient("http://users.test", transport=httpx.MockTransport(users_handler))
    yield client
    client.close()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def notifier(mailer):
    return OrderNotifier(mailer, frontend_url="https://shop.test")


@pytest.fixture
def context(settings, engine, session_factory, catalog, users, notifier):
    return OrdersContext(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        catalog=catalog,
        users=users,
        notifier=notifier,
    )


@pytest.fixture
def service(session, catalog, users, notifier, settings):
    return OrderService(session, catalog, users, notifier, settings)


@pytest.fixture
def client(context):
    return TestClient(create_app(context=context))


def make_token(user_id: str, role: str = "user") -> str:
    return jwt.encode({"sub": user_id, "role": role}, JWT_SECRET, algorithm="HS256")


@pytest.fixture
def auth():
    def headers(user_id: str = "user-1", role: str = "user") -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id, role)}"}
    return headers


def order_payload(*lines, **overrides) -> dict:
    body = {
        "items": [{"product_id": product_id, "quantity": quantity} for product_id, quantity in lines],
        "shipping_address": {
            "full_name": "  Ada Lovelace ",
            "address": "12 Analytical Way",
            "city": "London",
            "state": "Greater London",
            "zip_code": "NW1 6XE",
        },
        "payment_method": "card",
    }
    body.update(overrides)
    return body
