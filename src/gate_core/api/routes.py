"""FastAPI routes through which the host app feeds SDK and UI events."""
import logging
from enum import Enum
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from ..core.messages import AlertPermissionRequested, AlertPromptDismissed, GoToMain
from ..runtime.executor import utc_now
from ..service import GateService
from .auth import require_api_key


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1",
    tags=["gate"],
    dependencies=[Depends(require_api_key)],
)


class ConversionEvent(BaseModel):
    """Attribution SDK conversion callback (success or failure)."""

    data: dict[str, Any] = Field(
        default_factory=dict, description="Conversion payload on success"
    )
    error: Optional[str] = Field(
        None, description="Failure description; replaces data when set"
    )


class DeepLinkEvent(BaseModel):
    """Resolved deep link click event (sent only on successful resolution)."""

    click_event: dict[str, Any] = Field(..., description="Deep link key/value data")


class PushEvent(BaseModel):
    """Push notification user info."""

    payload: dict[str, Any] = Field(..., description="Notification payload")


class PushTokenEvent(BaseModel):
    """New push registration token."""

    token: str = Field(..., min_length=1)


class PermissionAction(str, Enum):
    """User action on the permission prompt screen."""

    REQUEST = "request"
    DISMISS = "dismiss"


class PermissionEvent(BaseModel):
    action: PermissionAction


class PermissionResult(BaseModel):
    """Answer from the system permission dialog."""

    granted: bool


class EventAccepted(BaseModel):
    accepted: bool = True
    detail: Optional[str] = None


class ViewResponse(BaseModel):
    """Stage and derived view flags for the host surface."""

    stage: str
    resource: Optional[str] = None
    frozen: bool
    show_permission_prompt: bool
    show_offline_view: bool
    navigate_to_content: bool
    navigate_to_fallback: bool
    register_for_notifications: bool


def get_service(request: Request) -> GateService:
    service = getattr(request.app.state, "gate", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gate service is not running",
        )
    return service


@router.post(
    "/events/conversion",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Attribution conversion callback",
)
async def post_conversion(
    event: ConversionEvent, service: GateService = Depends(get_service)
) -> EventAccepted:
    if event.error is not None:
        data: dict[str, Any] = {"error": True, "error_detail": event.error}
        logger.warning("Conversion data failed: %s", event.error)
    else:
        data = event.data
    service.merger.receive_tracking(data)
    return EventAccepted()


@router.post(
    "/events/deeplink",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Resolved deep link callback",
)
async def post_deeplink(
    event: DeepLinkEvent, service: GateService = Depends(get_service)
) -> EventAccepted:
    if not service.merger.accepts_linking:
        return EventAccepted(accepted=False, detail="attribution already delivered")
    service.merger.receive_linking(event.click_event)
    return EventAccepted()


@router.post(
    "/events/push",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Push notification received or opened",
)
async def post_push(
    event: PushEvent, service: GateService = Depends(get_service)
) -> EventAccepted:
    url = service.notifications.process(event.payload)
    if url is None:
        return EventAccepted(accepted=False, detail="no resource in payload")
    return EventAccepted()


@router.post(
    "/events/push-token",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Push registration token update",
)
async def post_push_token(
    event: PushTokenEvent, service: GateService = Depends(get_service)
) -> EventAccepted:
    await service.update_push_token(event.token)
    return EventAccepted()


@router.post(
    "/events/permission",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Permission prompt screen action",
)
async def post_permission(
    event: PermissionEvent, service: GateService = Depends(get_service)
) -> EventAccepted:
    if event.action is PermissionAction.REQUEST:
        service.program.send(AlertPermissionRequested())
    else:
        service.program.send(AlertPromptDismissed(at=utc_now()))
    return EventAccepted()


@router.post(
    "/events/permission/result",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="System permission dialog result",
)
async def post_permission_result(
    event: PermissionResult, service: GateService = Depends(get_service)
) -> EventAccepted:
    if not service.permission_prompt.resolve(event.granted):
        return EventAccepted(accepted=False, detail="no permission request pending")
    return EventAccepted()


@router.post(
    "/events/fallback",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="User skipped to the fallback surface",
)
async def post_fallback(service: GateService = Depends(get_service)) -> EventAccepted:
    service.program.send(GoToMain())
    return EventAccepted()


@router.get("/view", response_model=ViewResponse, summary="Current view state")
async def get_view(service: GateService = Depends(get_service)) -> ViewResponse:
    return ViewResponse(**service.snapshot())
