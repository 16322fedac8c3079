"""Repository package exports."""

from webhook_delivery.repositories.base import DeliveryRepository
from webhook_delivery.repositories.deliveries import PostgresDeliveryRepository
from webhook_delivery.repositories.memory import InMemoryDeliveryRepository

__all__ = [
    "DeliveryRepository",
    "InMemoryDeliveryRepository",
    "PostgresDeliveryRepository",
]
