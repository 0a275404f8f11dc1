"""HTTP clients for the catalog/inventory and user services."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from storefront_orders.core.logging_config import get_logger, request_id_var
from storefront_orders.domain.errors import CatalogUnavailableError, InsufficientStockError
from storefront_orders.domain.order import DEFAULT_ICON, to_money

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProductSnapshot:
    id: str
    name: str
    price: Decimal
    stock: int
    icon: str = DEFAULT_ICON


@dataclass(frozen=True)
class CustomerContact:
    email: Optional[str]
    name: Optional[str]


def _unwrap(payload: Any) -> Dict[str, Any]:
    # Upstream services answer either bare objects or {"success": ..., "data": {...}}
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload if isinstance(payload, dict) else {}


def _trace_headers() -> Dict[str, str]:
    request_id = request_id_var.get()
    return {"X-Request-ID": request_id} if request_id else {}


class CatalogClient:
    """Product lookups and stock adjustments against the catalog service"""

    def __init__(self, base_url: str, timeout: float = 5.0, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def ping(self) -> None:
        """Raise when the catalog cannot be reached or answers with a server error"""
        response = self._client.get("/health", timeout=2.0)
        if response.status_code >= 500:
            raise CatalogUnavailableError(f"Catalog health returned {response.status_code}")

    def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        """Fetch the current product; None when the catalog does not know it"""
        try:
            response = self._client.get(f"/products/{product_id}", headers=_trace_headers())
        except httpx.HTTPError as e:
            logger.error(f"Catalog lookup failed for product {product_id}: {e}")
            raise CatalogUnavailableError("Product catalog is unavailable")
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.error(
                f"Catalog returned {response.status_code} for product {product_id}",
                extra={"extra_fields": {"product_id": product_id, "status_code": response.status_code}},
            )
            raise CatalogUnavailableError("Product catalog is unavailable")
        data = _unwrap(response.json())
        return ProductSnapshot(
            id=str(data.get("id", product_id)),
            name=data.get("name", ""),
            price=to_money(data.get("price", 0)),
            stock=int(data.get("stock", data.get("stock_quantity", 0)) or 0),
            icon=data.get("icon") or DEFAULT_ICON,
        )

    def adjust_stock(self, product_id: str, delta: int) -> None:
        """Apply a signed stock change; negative deltas reserve, positive restore"""
        try:
            response = self._client.post(
                f"/products/{product_id}/stock",
                json={"delta": delta},
                headers=_trace_headers(),
            )
        except httpx.HTTPError as e:
            logger.error(f"Stock adjustment failed for product {product_id}: {e}")
            raise CatalogUnavailableError("Product catalog is unavailable")
        if response.status_code == 409:
            raise InsufficientStockError(
                f"Insufficient stock for product {product_id}",
                {"product_id": product_id, "requested": -delta},
            )
        if response.status_code >= 400:
            logger.error(
                f"Catalog rejected stock change for product {product_id}",
                extra={"extra_fields": {"product_id": product_id, "delta": delta,
                                        "status_code": response.status_code}},
            )
            raise CatalogUnavailableError("Product catalog is unavailable")


class UserDirectoryClient:
    """Contact lookup used to snapshot the customer's email at order time"""

    def __init__(self, base_url: str, timeout: float = 5.0, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def get_contact(self, user_id: str) -> Optional[CustomerContact]:
        try:
            response = self._client.get(f"/users/{user_id}", headers=_trace_headers())
        except httpx.HTTPError as e:
            # Missing contact only disables the confirmation email
            logger.warning(f"User lookup failed for {user_id}: {e}")
            return None
        if response.status_code != 200:
            logger.warning(f"User lookup for {user_id} returned {response.status_code}")
            return None
        data = _unwrap(response.json())
        return CustomerContact(email=data.get("email"), name=data.get("name"))
