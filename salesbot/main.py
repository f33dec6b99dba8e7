from typing import Optional

from fastapi import FastAPI

from salesbot.config import Settings, settings
from salesbot.logging_config import get_logger, setup_logging
from salesbot.routers import webhook
from salesbot.services.reply_service import ReplyEngine

logger = get_logger("main")


def create_app(app_settings: Settings = settings, engine: Optional[ReplyEngine] = None) -> FastAPI:
    setup_logging(app_settings.log_level)

    app = FastAPI(
        title="WhatsApp Sales Bot",
        description="Webhook-driven WhatsApp sales assistant",
        version="0.1.0",
    )
    app.include_router(webhook.router)
    app.state.engine = engine

    @app.on_event("startup")
    async def start_engine() -> None:
        if app.state.engine is not None:
            return
        # Raising here aborts startup, so nothing is served without secrets.
        app_settings.require_secrets()
        app.state.engine = ReplyEngine.from_settings(app_settings)
        logger.info(
            "Sales bot started",
            extra={
                "context": {
                    "model": app_settings.openai_model,
                    "debounce_seconds": app_settings.debounce_seconds,
                    "rate_limit_seconds": {
                        "hot": app_settings.rate_limit_hot_seconds,
                        "default": app_settings.rate_limit_default_seconds,
                    },
                }
            },
        )

    @app.on_event("shutdown")
    async def stop_engine() -> None:
        if app.state.engine is None:
            return
        await app.state.engine.shutdown()
        app.state.engine = None

    return app


app = create_app()
