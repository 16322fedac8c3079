"""Domain services exports."""

from webhook_delivery.services.coordinator import DeliveryCoordinator
from webhook_delivery.services.hooks import HookNotifier
from webhook_delivery.services.webhooks import WebhookService

__all__ = [
    "DeliveryCoordinator",
    "HookNotifier",
    "WebhookService",
]
