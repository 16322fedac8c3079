"""aiohttp application wiring for running the dispatcher in-process."""
from __future__ import annotations

from aiohttp import web

from webhook_delivery.dispatcher import WebhookDispatcher
from webhook_delivery.logging_config import configure_logging
from webhook_delivery.services.webhooks import WebhookService
from webhook_delivery.settings import settings

_SERVICE_KEY = "webhook_service"


async def healthcheck(request: web.Request) -> web.Response:
    service: WebhookService = request.app[_SERVICE_KEY]
    stats = await service.stats()
    return web.json_response(
        {
            "status": "ok",
            "service": settings.app_name,
            "deliveries": stats.model_dump(),
        }
    )


def create_app(service: WebhookService, dispatcher: WebhookDispatcher) -> web.Application:
    configure_logging()

    app = web.Application()
    app[_SERVICE_KEY] = service
    app.router.add_get("/health", healthcheck)
    app.on_startup.append(dispatcher.start)
    app.on_cleanup.append(dispatcher.stop)
    return app
