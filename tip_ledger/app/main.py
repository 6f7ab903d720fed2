import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .api.exceptions import register_exception_handlers
from .api.routes import (
    admin_router,
    payment_router,
    router as creators_router,
    stream_router,
    transaction_router,
    webhook_alias_router,
)
from .core.config import Settings, get_settings
from .core.db import Database
from .core.events import TransactionEventBus
from .services import PaymentProvider, PaystackClient

settings = get_settings()
logging.basicConfig(level=settings.log_level)


def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    provider: Optional[PaymentProvider] = None,
    event_bus: Optional[TransactionEventBus] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.database.init_schema()
        yield
        app.state.payment_provider.close()
        app.state.database.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database or Database(
        settings.database_url, sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms
    )
    app.state.payment_provider = provider or PaystackClient(
        settings.paystack_secret_key,
        base_url=settings.paystack_base_url,
        currency=settings.currency,
        timeout=settings.paystack_timeout_seconds,
    )
    app.state.event_bus = event_bus or TransactionEventBus(queue_size=settings.event_queue_size)

    app.include_router(creators_router)
    app.include_router(transaction_router)
    app.include_router(payment_router)
    app.include_router(webhook_alias_router)
    app.include_router(admin_router)
    app.include_router(stream_router)
    register_exception_handlers(app)

    @app.get("/health")
    def read_health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/config/public")
    def read_public_config() -> dict[str, bool]:
        return {"webhook_enabled": settings.enable_webhook}

    return app


app = create_app(settings)
