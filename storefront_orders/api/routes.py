from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from storefront_orders.api.deps import CurrentUser, get_current_user, get_order_service, require_admin
from storefront_orders.application.service import OrderService
from storefront_orders.application.schemas import (
    OrderCreate,
    OrderDetailsUpdate,
    OrderPage,
    OrderRead,
    OrderResult,
    OrderStatusUpdate,
    PaymentStatusUpdate,
)
from storefront_orders.domain.status import OrderStatus, PaymentStatus

router = APIRouter(prefix="/orders", tags=["orders"])

def _read(order) -> OrderRead:
    return OrderRead.model_validate(order)

@router.post("/", response_model=OrderResult, status_code=201)
async def create_order(
    payload: OrderCreate,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    outcome = await service.place_order(user.id, payload)
    return {"order": _read(outcome.order), "warnings": outcome.warnings}

@router.get("/my-orders", response_model=OrderPage)
def list_my_orders(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    """Orders of the calling user, newest first."""
    orders, pagination = service.list_for_user(user.id, page=page, limit=limit)
    return {"orders": [_read(o) for o in orders], "pagination": pagination}

@router.get("/pending", response_model=list[OrderRead])
def list_pending_orders(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    _: CurrentUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    return [_read(o) for o in service.list_pending(page=page, limit=limit)]

@router.get("/", response_model=OrderPage)
def list_orders(
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    _: CurrentUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    """List all orders (admin), optionally filtered by status or payment status."""
    orders, pagination = service.list_orders(status, payment_status, page=page, limit=limit)
    return {"orders": [_read(o) for o in orders], "pagination": pagination}

@router.get("/{order_id}", response_model=OrderRead)
def get_order(
    order_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = service.get(order_id)
    # Users can only see their own orders unless admin
    if order.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Not authorized to access this order")
    return _read(order)

@router.patch("/{order_id}/cancel", response_model=OrderRead)
def cancel_order(
    order_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = service.get(order_id)
    if order.user_id != user.id:
        raise HTTPException(status_code=403, detail="Not authorized to cancel this order")
    return _read(service.cancel(order_id))

@router.patch("/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    _: CurrentUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    return _read(service.update_status(order_id, payload.status, payload.tracking_number))

@router.patch("/{order_id}/payment", response_model=OrderResult)
async def update_payment_status(
    order_id: str,
    payload: PaymentStatusUpdate,
    _: CurrentUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    outcome = await service.confirm_payment(order_id, payload.payment_status, payload.payment_intent_id)
    return {"order": _read(outcome.order), "warnings": outcome.warnings}

@router.patch("/{order_id}", response_model=OrderRead)
def update_order_details(
    order_id: str,
    payload: OrderDetailsUpdate,
    _: CurrentUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    return _read(service.update_details(order_id, payload))
