from fastapi import Depends, Request

from core.db import SessionFactory
from services.orders import OrderCoordinator
from services.repository import OrderRepository, ProductRepository, ReviewRepository


def get_session_factory(request: Request) -> SessionFactory:
    """Session factory created by ``create_app`` for this application."""
    return request.app.state.session_factory


def get_product_repository(session_factory: SessionFactory = Depends(get_session_factory)) -> ProductRepository:
    return ProductRepository(session_factory)


def get_review_repository(session_factory: SessionFactory = Depends(get_session_factory)) -> ReviewRepository:
    return ReviewRepository(session_factory)


def get_order_repository(session_factory: SessionFactory = Depends(get_session_factory)) -> OrderRepository:
    return OrderRepository(session_factory)


def get_order_coordinator(request: Request, session_factory: SessionFactory = Depends(get_session_factory)) -> OrderCoordinator:
    settings = request.app.state.settings
    return OrderCoordinator(
        session_factory,
        max_attempts=settings.ORDER_MAX_ATTEMPTS,
        retry_backoff=settings.ORDER_RETRY_BACKOFF,
    )
