from fastapi import APIRouter, Depends
from typing import List

from core.deps import get_order_coordinator, get_order_repository
from schemas.order import OrderCreate, OrderOut
from services.orders import LineItem, OrderCoordinator
from services.repository import OrderRepository

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=List[OrderOut])
def list_orders(repo: OrderRepository = Depends(get_order_repository)):
    return repo.list()


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: int, repo: OrderRepository = Depends(get_order_repository)):
    return repo.get_by_id(order_id)


@router.post("", response_model=OrderOut, status_code=201)
def create_order(data: OrderCreate, coordinator: OrderCoordinator = Depends(get_order_coordinator)):
    items = [LineItem(product_id=item.product_id, quantity=item.quantity) for item in data.items]
    return coordinator.create_order(items)


@router.delete("/{order_id}", status_code=204)
def cancel_order(order_id: int, coordinator: OrderCoordinator = Depends(get_order_coordinator)):
    coordinator.cancel_order(order_id)
    return None
