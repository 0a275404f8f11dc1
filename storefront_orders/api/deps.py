from dataclasses import dataclass
from typing import Iterator, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from storefront_orders.application.service import OrderService
from storefront_orders.context import OrdersContext
from storefront_orders.core.logging_config import set_request_context
from storefront_orders.infrastructure.db import session_scope

bearer_scheme = HTTPBearer(auto_error=False)

@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

def get_context(request: Request) -> OrdersContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return context

def get_db(context: OrdersContext = Depends(get_context)) -> Iterator[Session]:
    yield from session_scope(context.session_factory)

def get_order_service(
    db: Session = Depends(get_db),
    context: OrdersContext = Depends(get_context),
) -> OrderService:
    return OrderService(db, context.catalog, context.users, context.notifier, context.settings)

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    context: OrdersContext = Depends(get_context),
) -> CurrentUser:
    """Decode the gateway-issued bearer token; `sub` is the user id"""
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authorized, no valid token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise unauthorized
    try:
        payload = jwt.decode(
            credentials.credentials,
            context.settings.JWT_SECRET,
            algorithms=[context.settings.JWT_ALG],
        )
    except jwt.PyJWTError:
        raise unauthorized
    subject = payload.get("sub") or payload.get("userId")
    if not subject:
        raise unauthorized
    set_request_context(user_id=str(subject))
    return CurrentUser(id=str(subject), role=payload.get("role", "user"))

async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
