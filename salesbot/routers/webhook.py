from json import JSONDecodeError

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from salesbot.logging_config import get_logger
from salesbot.schemas.webhook import WebhookPayload

logger = get_logger("webhook")

router = APIRouter()

CHALLENGE_PARAMS = ("hub.challenge", "challenge")


@router.get("/")
async def root():
    logger.debug("Health check ping received")
    return PlainTextResponse("Server running")


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/webhook")
async def verify_webhook(request: Request):
    for param in CHALLENGE_PARAMS:
        challenge = request.query_params.get(param)
        if challenge:
            return PlainTextResponse(challenge)
    return PlainTextResponse("Forbidden", status_code=status.HTTP_403_FORBIDDEN)


@router.post("/webhook")
async def receive_webhook(request: Request):
    """Acknowledge immediately; each message is processed in its own task."""
    try:
        payload = WebhookPayload(**(await request.json()))
    except (JSONDecodeError, UnicodeDecodeError, TypeError, ValidationError) as exc:
        logger.warning(f"Webhook payload rejected: {exc.__class__.__name__}")
        return JSONResponse({"status": "ignored"})

    if not payload.messages:
        logger.info("Payload has no messages, skipping")
        return JSONResponse({"status": "ok", "messages": 0})

    engine = request.app.state.engine
    count = engine.dispatch(payload.messages)
    logger.info(f"Received {count} message(s)")
    return JSONResponse({"status": "ok", "messages": count})
