"""FastAPI surface for kubepulse.

Read endpoints for health scores, alerts and suggestions, alert state
transitions, incident tracking, and on-demand passes.  The scheduler is
started and stopped with the application.
"""

import logging
import sqlite3
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from kubepulse.analysis.llm import llm_configured
from kubepulse.config import get_settings
from kubepulse.monitoring.incidents import IncidentNotFoundError, open_incident, resolve_incident
from kubepulse.observability.metrics import APP_INFO, COMPONENT_HEALTHY, REQUEST_DURATION, REQUESTS_TOTAL
from kubepulse.pipeline import PassResult, run_analysis_pass, run_monitoring_pass
from kubepulse.scheduler import start_scheduler, stop_scheduler
from kubepulse.store.alerts import (
    acknowledge_alert,
    get_alerts,
    get_open_smart_alerts,
    get_smart_alert,
    resolve_alert,
    resolve_smart_alert,
)
from kubepulse.store.analysis import get_suggestions
from kubepulse.store.clusters import get_active_clusters, get_cluster
from kubepulse.store.db import get_connection, get_initialized_connection
from kubepulse.store.metrics import get_latest_health_score

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class ComponentHealth(BaseModel):
    """Health status of a single dependency."""

    name: str
    status: str
    detail: str | None = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    version: str
    active_clusters: int
    components: list[ComponentHealth]


class IncidentRequest(BaseModel):
    """Request body for POST /clusters/{cluster_id}/incidents."""

    title: str
    severity: str
    description: str = ""


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the schema once at startup, run the scheduler while serving."""
    settings = get_settings()
    APP_INFO.info({"version": VERSION, "llm_provider": settings.llm_provider})

    conn = get_initialized_connection()
    conn.close()
    logger.info("Store ready at %s", settings.database_path)

    start_scheduler()
    yield
    stop_scheduler()
    logger.info("Shutting down kubepulse")


app = FastAPI(title="kubepulse", lifespan=lifespan)


def get_db() -> Iterator[sqlite3.Connection]:
    """One store connection per request."""
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


Db = Annotated[sqlite3.Connection, Depends(get_db)]


def _not_found(what: str, ident: int) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{what} {ident} not found")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", response_model=HealthResponse)
async def health(conn: Db) -> HealthResponse:
    """Check the store and report whether a real oracle is configured."""
    components: list[ComponentHealth] = []
    active = 0

    # --- Store ---
    try:
        active = len(get_active_clusters(conn))
        components.append(ComponentHealth(name="store", status="healthy"))
    except sqlite3.Error as exc:
        components.append(ComponentHealth(name="store", status="unhealthy", detail=str(exc)))

    # --- Oracle ---
    if llm_configured(get_settings()):
        components.append(ComponentHealth(name="oracle", status="healthy"))
    else:
        components.append(ComponentHealth(name="oracle", status="degraded", detail="no LLM key, null oracle in use"))

    for comp in components:
        COMPONENT_HEALTHY.labels(component=comp.name).set(1.0 if comp.status == "healthy" else 0.0)

    if components[0].status != "healthy":
        overall = "unhealthy"
    elif all(c.status == "healthy" for c in components):
        overall = "healthy"
    else:
        overall = "degraded"
    return HealthResponse(status=overall, version=VERSION, active_clusters=active, components=components)


@app.get("/clusters/{cluster_id}/health-score")
async def cluster_health_score(cluster_id: int, conn: Db) -> dict[str, object]:
    """Most recently calculated health score of a cluster."""
    if get_cluster(conn, cluster_id) is None:
        raise _not_found("Cluster", cluster_id)
    score = get_latest_health_score(conn, cluster_id)
    if score is None:
        raise HTTPException(status_code=404, detail=f"No health score calculated yet for cluster {cluster_id}")
    return dict(score)


@app.get("/clusters/{cluster_id}/alerts")
async def cluster_alerts(
    cluster_id: int, conn: Db, include_resolved: bool = False, limit: int = 100
) -> dict[str, object]:
    """Threshold alerts and open smart alerts of a cluster."""
    if get_cluster(conn, cluster_id) is None:
        raise _not_found("Cluster", cluster_id)
    return {
        "alerts": get_alerts(conn, cluster_id, include_resolved=include_resolved, limit=limit),
        "smart_alerts": get_open_smart_alerts(conn, cluster_id),
    }


@app.post("/alerts/{alert_id}/acknowledge")
async def acknowledge(alert_id: int, conn: Db) -> dict[str, object]:
    alert = acknowledge_alert(conn, alert_id)
    if alert is None:
        raise _not_found("Alert", alert_id)
    return dict(alert)


@app.post("/alerts/{alert_id}/resolve")
async def resolve(alert_id: int, conn: Db) -> dict[str, object]:
    alert = resolve_alert(conn, alert_id)
    if alert is None:
        raise _not_found("Alert", alert_id)
    return dict(alert)


@app.post("/smart-alerts/{alert_id}/resolve")
async def resolve_smart(alert_id: int, conn: Db) -> dict[str, object]:
    alert = resolve_smart_alert(conn, alert_id)
    if alert is None:
        raise _not_found("Smart alert", alert_id)
    return dict(alert)


@app.get("/smart-alerts/{alert_id}/suggestions")
async def smart_alert_suggestions(alert_id: int, conn: Db) -> dict[str, object]:
    """Suggestions for a smart alert, highest priority first."""
    if get_smart_alert(conn, alert_id) is None:
        raise _not_found("Smart alert", alert_id)
    return {"alert_id": alert_id, "suggestions": get_suggestions(conn, alert_id)}


@app.post("/clusters/{cluster_id}/incidents")
async def create_incident(cluster_id: int, request: IncidentRequest, conn: Db) -> dict[str, object]:
    """Open an incident and notify the owner's channels."""
    try:
        incident, notified = await open_incident(
            conn, cluster_id=cluster_id, title=request.title, severity=request.severity, description=request.description
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"incident": incident, "notifications": notified}


@app.post("/incidents/{incident_id}/resolve")
async def close_incident(incident_id: int, conn: Db) -> dict[str, object]:
    try:
        incident, notified = await resolve_incident(conn, incident_id)
    except IncidentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"incident": incident, "notifications": notified}


async def _timed_pass(endpoint: str, conn: sqlite3.Connection, pass_type: str) -> PassResult:
    start = time.monotonic()
    try:
        if pass_type == "monitor":
            result = await run_monitoring_pass(conn, runtime=getattr(app.state, "runtime", None))
        else:
            result = await run_analysis_pass(conn, oracle=getattr(app.state, "oracle", None))
    except Exception as exc:
        REQUESTS_TOTAL.labels(endpoint=endpoint, status="error").inc()
        REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)
        logger.exception("On-demand %s pass failed", pass_type)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    REQUESTS_TOTAL.labels(endpoint=endpoint, status="success").inc()
    REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)
    return result


@app.post("/passes/monitor")
async def monitor_pass(conn: Db) -> dict[str, object]:
    """Run a monitoring pass over every active cluster now."""
    return dict(await _timed_pass("/passes/monitor", conn, "monitor"))


@app.post("/passes/analysis")
async def analysis_pass(conn: Db) -> dict[str, object]:
    """Run an analysis pass over every active cluster now."""
    return dict(await _timed_pass("/passes/analysis", conn, "analysis"))
