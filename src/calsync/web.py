"""Inbound webhook endpoint for Google Calendar push notifications."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Header, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from calsync import __version__
from calsync.calendar.channels import ChannelManager
from calsync.calendar.exceptions import CalendarAPIError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations/google-calendar", tags=["google-calendar"])


class WebhookAck(BaseModel):
    """Acknowledgement returned to the provider."""

    success: bool = True


def get_channel_manager(request: Request) -> ChannelManager:
    """Dependency returning the app's channel manager."""
    return request.app.state.channel_manager


@router.post("/webhook", response_model=WebhookAck)
def receive_notification(
    background_tasks: BackgroundTasks,
    manager: ChannelManager = Depends(get_channel_manager),
    x_goog_channel_id: str | None = Header(default=None),
    x_goog_channel_token: str | None = Header(default=None),
    x_goog_resource_state: str | None = Header(default=None),
) -> WebhookAck:
    """Handle a push notification.

    Always acknowledged with 200: a non-2xx answer only makes Google retry
    a notification that cannot be processed anyway.  Syncs run after the
    response is sent.
    """
    try:
        action = manager.handle_notification(
            x_goog_channel_id,
            x_goog_resource_state,
            x_goog_channel_token,
            run_job=background_tasks.add_task,
        )
        logger.info(
            "Webhook notification channel=%s state=%s -> %s",
            x_goog_channel_id,
            x_goog_resource_state,
            action.value,
        )
    except (CalendarAPIError, SQLAlchemyError) as exc:
        logger.error("Failed to handle webhook notification %s: %s", x_goog_channel_id, exc)
    return WebhookAck()


def create_app(channel_manager: ChannelManager) -> FastAPI:
    """Build the FastAPI application serving the webhook router."""
    app = FastAPI(title="calsync", version=__version__)
    app.state.channel_manager = channel_manager
    app.include_router(router)
    return app
