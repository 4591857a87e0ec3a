# room_audit/services/audit_service.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from room_audit.core.config import Settings, get_settings
from room_audit.schemas.report import AuditReport
from room_audit.services.graph_client import GraphClient, GraphClientError, get_graph_client
from room_audit.services.identity_classifier import ClassifierConfig
from room_audit.services.meeting_auditor import (
    AuditPredicate,
    GhostMeetingPredicate,
    MeetingAuditor,
    NotificationTemplate,
    UnderutilizationPredicate,
)
from room_audit.services.notification_mailer import send_notifications
from room_audit.services.room_directory import RoomDirectory
from room_audit.services.time_window import build_audit_window

logger = logging.getLogger(__name__)


class AuditConfigurationError(RuntimeError):
    """
    Raised before any Graph call when the audit cannot run with the current
    settings.
    """


def _require_graph(settings: Settings) -> GraphClient:
    if not settings.graph_configured:
        raise AuditConfigurationError(
            "GRAPH_TENANT_ID, GRAPH_CLIENT_ID and GRAPH_CLIENT_SECRET must be configured."
        )
    if not settings.ORGANIZATION_SUFFIX:
        raise AuditConfigurationError("ORGANIZATION_SUFFIX must be configured.")
    try:
        return get_graph_client()
    except (GraphClientError, ValueError) as exc:
        raise AuditConfigurationError(str(exc)) from exc


async def _run(
    settings: Settings,
    graph: GraphClient,
    predicate: AuditPredicate,
    min_capacity: int | None,
    now: datetime | None,
) -> AuditReport:
    window = build_audit_window(settings.MONTHS_AHEAD, settings.MONTHS_BEHIND, now=now)

    try:
        rooms = await RoomDirectory(graph).list_rooms(
            addresses=settings.room_addresses,
            min_capacity=min_capacity,
        )
    except GraphClientError as exc:
        raise AuditConfigurationError(f"Cannot list rooms: {exc}") from exc

    auditor = MeetingAuditor(
        graph,
        ClassifierConfig(organization_suffix=settings.ORGANIZATION_SUFFIX),
        max_items_per_query=settings.GRAPH_MAX_ITEMS_PER_QUERY,
    )
    report = await auditor.audit(rooms, window, predicate)
    if report.warnings:
        logger.warning("Audit finished with %d warnings (partial data)", len(report.warnings))
    return report


async def run_ghost_meeting_audit(
    send_notifications_override: bool | None = None,
    now: datetime | None = None,
) -> AuditReport:
    """
    Audit every room for meetings whose organizer is disabled or unknown.

    Notifications follow NOTIFICATIONS_ENABLED unless overridden. When they
    are enabled, the produced requests are delivered over SMTP and the number
    delivered is recorded in the report summary.
    """
    settings = get_settings()
    graph = _require_graph(settings)

    notify = settings.NOTIFICATIONS_ENABLED if send_notifications_override is None else send_notifications_override
    template = None
    if notify:
        if not settings.NOTIFICATION_FROM_ADDRESS:
            raise AuditConfigurationError(
                "NOTIFICATION_FROM_ADDRESS must be configured to send notifications."
            )
        template = NotificationTemplate(
            from_address=settings.NOTIFICATION_FROM_ADDRESS,
            subject_template=settings.NOTIFICATION_SUBJECT_TEMPLATE,
            body_template=settings.NOTIFICATION_BODY_TEMPLATE,
        )

    predicate = GhostMeetingPredicate(notifications_enabled=notify, template=template)
    report = await _run(settings, graph, predicate, min_capacity=None, now=now)

    if notify and report.notifications:
        # smtplib blocks; deliver from a worker thread.
        report.summary.notifications_sent = await asyncio.to_thread(
            send_notifications, report.notifications
        )
    return report


async def run_underutilization_audit(now: datetime | None = None) -> AuditReport:
    """
    Audit rooms with at least MIN_CAPACITY seats for bookings with at most
    MAX_PARTICIPANTS participants.
    """
    settings = get_settings()
    graph = _require_graph(settings)
    predicate = UnderutilizationPredicate(
        minimum_capacity=settings.MIN_CAPACITY,
        max_participants=settings.MAX_PARTICIPANTS,
    )
    return await _run(settings, graph, predicate, min_capacity=settings.MIN_CAPACITY, now=now)
