"""
Webhook Endpoints for Crewboard.

Receives user lifecycle events from the identity provider.
"""

import hmac
import logging
from typing import Any

from fastapi import APIRouter, Header
from pydantic import BaseModel, Field

from crewboard.core.config import get_settings
from crewboard.core.dependencies import DbSession
from crewboard.core.exceptions import UnauthorizedError
from crewboard.services.webhook_service import IdentitySyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


class IdentityEvent(BaseModel):
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class WebhookAck(BaseModel):
    success: bool
    result: str


def _check_secret(provided: str | None) -> None:
    expected = get_settings().webhook_secret
    if not expected:
        return
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Rejected identity webhook with a bad secret")
        raise UnauthorizedError("Invalid webhook secret")


@router.post("/identity", response_model=WebhookAck)
async def identity_webhook(
    event: IdentityEvent,
    session: DbSession,
    x_webhook_secret: str | None = Header(None),
) -> WebhookAck:
    """
    Apply a ``user.created``, ``user.updated`` or ``user.deleted`` event.

    Other event types are acknowledged and ignored.
    """
    _check_secret(x_webhook_secret)
    result = await IdentitySyncService(session).handle_event(event.type, event.data)
    return WebhookAck(success=True, result=result)
