"""Incident-tracking workflow: open, update and resolve incidents, notifying each step."""

import logging
import sqlite3

from kubepulse.notify.dispatcher import SEVERITY_SCALE, DispatchResult, NotificationEvent, dispatch
from kubepulse.store.clusters import get_cluster
from kubepulse.store.db import utc_iso
from kubepulse.store.models import IncidentRecord
from kubepulse.store.notifications import append_timeline_event, get_incident, save_incident, update_incident

logger = logging.getLogger(__name__)

INCIDENT_STATUSES = ("open", "investigating", "resolved", "closed")


class IncidentNotFoundError(LookupError):
    pass


async def _notify(conn: sqlite3.Connection, incident: IncidentRecord, action: str, message: str) -> DispatchResult:
    cluster = get_cluster(conn, incident["cluster_id"])
    return await dispatch(
        conn,
        NotificationEvent(
            owner=incident["owner"],
            cluster_id=incident["cluster_id"],
            cluster_name=cluster["name"] if cluster else str(incident["cluster_id"]),
            message=message,
            severity=incident["severity"],
            action=action,
            resource_name=None,
            incident_id=incident["id"],
        ),
    )


def _require(conn: sqlite3.Connection, incident_id: int) -> IncidentRecord:
    incident = get_incident(conn, incident_id)
    if incident is None:
        msg = f"Incident {incident_id} not found"
        raise IncidentNotFoundError(msg)
    return incident


async def open_incident(
    conn: sqlite3.Connection,
    *,
    cluster_id: int,
    title: str,
    severity: str,
    description: str = "",
) -> tuple[IncidentRecord, DispatchResult]:
    """Open an incident for a cluster and send a ``create`` notification.

    Raises:
        ValueError: If the severity is not one of low/medium/high/critical.
        LookupError: If the cluster does not exist.
    """
    if severity not in SEVERITY_SCALE:
        msg = f"Invalid incident severity: {severity}"
        raise ValueError(msg)
    cluster = get_cluster(conn, cluster_id)
    if cluster is None:
        msg = f"Cluster {cluster_id} not found"
        raise LookupError(msg)

    incident_id = save_incident(
        conn, owner=cluster["owner"], cluster_id=cluster_id, title=title, severity=severity, description=description
    )
    logger.info("Opened %s incident %d on %s: %s", severity, incident_id, cluster["name"], title)
    result = await _notify(conn, _require(conn, incident_id), "create", title)
    return _require(conn, incident_id), result


async def update_incident_details(
    conn: sqlite3.Connection,
    incident_id: int,
    *,
    status: str | None = None,
    severity: str | None = None,
    description: str | None = None,
) -> tuple[IncidentRecord, DispatchResult]:
    """Change status/severity/description, record it on the timeline and notify.

    Moving to resolved or closed sends a ``resolve`` notification, anything else ``update``.
    """
    if status is not None and status not in INCIDENT_STATUSES:
        msg = f"Invalid incident status: {status}"
        raise ValueError(msg)
    if severity is not None and severity not in SEVERITY_SCALE:
        msg = f"Invalid incident severity: {severity}"
        raise ValueError(msg)
    previous = _require(conn, incident_id)

    update_incident(conn, incident_id, status=status, severity=severity, description=description)
    changed = [
        f"{name}: {old} -> {new}"
        for name, old, new in (("status", previous["status"], status), ("severity", previous["severity"], severity))
        if new is not None and new != old
    ]
    details = ", ".join(changed) or "details updated"
    append_timeline_event(conn, incident_id, {"timestamp": utc_iso(), "action": "updated", "details": details})

    incident = _require(conn, incident_id)
    action = "resolve" if incident["status"] in ("resolved", "closed") else "update"
    result = await _notify(conn, incident, action, f"{incident['title']} ({details})")
    return _require(conn, incident_id), result


async def resolve_incident(conn: sqlite3.Connection, incident_id: int) -> tuple[IncidentRecord, DispatchResult]:
    return await update_incident_details(conn, incident_id, status="resolved")
