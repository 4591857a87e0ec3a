# room_audit/api/routes/audits.py
import logging
from http import HTTPStatus

from fastapi import APIRouter, Depends, HTTPException, Query

from room_audit.api.dependencies.internal_auth import verify_internal_api_key
from room_audit.schemas.report import AuditReport
from room_audit.services import audit_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal/audits",
    tags=["Internal"],
    dependencies=[Depends(verify_internal_api_key)],
)

_ERROR_RESPONSES = {
    401: {"description": "Missing or invalid internal API key (if configured)."},
    500: {"description": "The audit is not configured (Graph credentials, suffix, sender)."},
}


def _configuration_error(exc: audit_service.AuditConfigurationError) -> HTTPException:
    logger.error("Audit not run: %s", exc)
    return HTTPException(status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post(
    "/ghost-meetings",
    response_model=AuditReport,
    response_model_by_alias=True,
    status_code=HTTPStatus.OK,
    summary="Find meetings organized by disabled or unknown accounts",
    description=(
        "Scans every room calendar over the configured window and returns one row per "
        "meeting. Rows whose organizer is `Disabled` or `NotFound` are flagged "
        "`is_ghost`.\n\n"
        "When notifications are enabled (setting or `send_notifications=true`), the "
        "attendees of ghost meetings are emailed and the requests are returned as well."
    ),
    responses=_ERROR_RESPONSES,
)
async def ghost_meetings(
    send_notifications: bool | None = Query(
        default=None,
        description="Override NOTIFICATIONS_ENABLED for this run.",
    ),
) -> AuditReport:
    try:
        return await audit_service.run_ghost_meeting_audit(
            send_notifications_override=send_notifications
        )
    except audit_service.AuditConfigurationError as exc:
        raise _configuration_error(exc) from exc


@router.post(
    "/underutilized-rooms",
    response_model=AuditReport,
    response_model_by_alias=True,
    status_code=HTTPStatus.OK,
    summary="Find large rooms booked for very few people",
    description=(
        "Returns bookings in rooms with at least `MIN_CAPACITY` seats that have at most "
        "`MAX_PARTICIPANTS` distinct participants (organizer included, room excluded)."
    ),
    responses=_ERROR_RESPONSES,
)
async def underutilized_rooms() -> AuditReport:
    try:
        return await audit_service.run_underutilization_audit()
    except audit_service.AuditConfigurationError as exc:
        raise _configuration_error(exc) from exc
