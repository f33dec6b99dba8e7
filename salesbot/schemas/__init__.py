from salesbot.schemas.webhook import InboundMessage, InboundText, WebhookPayload

__all__ = ["InboundMessage", "InboundText", "WebhookPayload"]
