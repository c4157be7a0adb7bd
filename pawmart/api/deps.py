"""
Service wiring for the API layer.

One container per process, created on first use. Routes receive services
through FastAPI dependencies, so tests can swap the whole container with
`app.dependency_overrides[get_services]`.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends

from pawmart.core.config import settings
from pawmart.database.base import OrderStore
from pawmart.database.dynamodb_store import DynamoDBOrderStore
from pawmart.database.memory_store import InMemoryOrderStore
from pawmart.services.checkout_service import CheckoutService
from pawmart.services.email_service import EmailService
from pawmart.services.notification_service import NotificationService
from pawmart.services.order_lifecycle import OrderLifecycleService
from pawmart.services.order_materializer import OrderMaterializer
from pawmart.services.payment_gateway import EasebuzzGateway
from pawmart.services.payment_service import PaymentService
from pawmart.services.stock_reservation import StockReservationEngine

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: OrderStore
    gateway: EasebuzzGateway
    checkout: CheckoutService
    payments: PaymentService
    lifecycle: OrderLifecycleService


def create_store(backend: Optional[str] = None) -> OrderStore:
    backend = (backend or settings.STORAGE_BACKEND).lower()
    if backend == "memory":
        return InMemoryOrderStore()
    if backend == "dynamodb":
        return DynamoDBOrderStore()
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")


def build_services(
    store: Optional[OrderStore] = None,
    gateway: Optional[EasebuzzGateway] = None,
    email_service: Optional[EmailService] = None,
) -> Services:
    store = store or create_store()
    gateway = gateway or EasebuzzGateway()
    email_service = email_service or EmailService()

    tracking_attempts = settings.TRACKING_NUMBER_MAX_ATTEMPTS
    engine = StockReservationEngine(store)
    materializer = OrderMaterializer(store, tracking_attempts)
    notifications = NotificationService(store, email_service)
    payments = PaymentService(store, gateway, engine, materializer, notifications)

    return Services(
        store=store,
        gateway=gateway,
        checkout=CheckoutService(store, engine, materializer, payments, notifications),
        payments=payments,
        lifecycle=OrderLifecycleService(store, engine, notifications, tracking_attempts),
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """Get or create the process-wide service container"""
    global _services
    if _services is None:
        _services = build_services()
        logger.info(f"Services initialized with {type(_services.store).__name__}")
    return _services


async def shutdown_services() -> None:
    global _services
    if _services is not None:
        await _services.gateway.close()
        _services = None


def get_checkout_service(services: Services = Depends(get_services)) -> CheckoutService:
    return services.checkout


def get_payment_service(services: Services = Depends(get_services)) -> PaymentService:
    return services.payments


def get_lifecycle_service(services: Services = Depends(get_services)) -> OrderLifecycleService:
    return services.lifecycle


def get_store(services: Services = Depends(get_services)) -> OrderStore:
    return services.store
