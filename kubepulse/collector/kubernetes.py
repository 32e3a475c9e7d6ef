"""Cluster runtime status: pods and events read from the Kubernetes REST API.

Only the two read-only list calls the monitoring pass needs are implemented.
Timestamps are normalized to ``utc_iso`` form here so that everything stored
downstream compares correctly as text.
"""

import base64
import logging
import ssl
from typing import Protocol, TypedDict

import httpx

from kubepulse.store.db import parse_ts, utc_iso
from kubepulse.store.models import ClusterRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15

_POD_PHASES = frozenset({"Running", "Pending", "Failed", "Succeeded", "Unknown"})


class KubernetesAPIError(Exception):
    """The cluster API was unreachable or answered with an error."""


class PodStatus(TypedDict):
    pod_name: str
    namespace: str
    container_name: str
    phase: str
    restart_count: int
    exit_code: int | None
    last_termination_reason: str | None
    last_finished_at: str | None


class RawEvent(TypedDict):
    uid: str
    namespace: str
    name: str
    kind: str
    reason: str
    message: str
    type: str
    source_component: str | None
    source_host: str | None
    first_timestamp: str | None
    last_timestamp: str | None
    count: int


class ClusterRuntime(Protocol):
    """Read-only view of a cluster's current pods and events."""

    async def list_pods(self, cluster: ClusterRecord) -> list[PodStatus]: ...

    async def list_events(self, cluster: ClusterRecord) -> list[RawEvent]: ...


# --- SSL helper ---


def _cluster_ssl_verify(cluster: ClusterRecord) -> ssl.SSLContext | bool:
    """Build the SSL verification parameter for httpx.

    Clusters registered with a base64 CA bundle get a context trusting only
    that bundle; otherwise the system CA store is used.
    """
    if not cluster["ca_data"]:
        return True
    pem = base64.b64decode(cluster["ca_data"]).decode()
    return ssl.create_default_context(cadata=pem)


def normalize_timestamp(raw: object) -> str | None:
    """Convert an RFC3339 API timestamp to ``utc_iso`` form; None if absent or unparsable."""
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return utc_iso(parse_ts(raw))
    except ValueError:
        logger.debug("Unparsable timestamp from cluster API: %s", raw)
        return None


# --- Response parsing ---


def parse_pods(body: dict[str, object], default_namespace: str) -> list[PodStatus]:
    """Flatten a PodList into one entry per container status."""
    items = body.get("items")
    if not isinstance(items, list):
        return []

    statuses: list[PodStatus] = []
    for pod in items:
        if not isinstance(pod, dict):
            continue
        metadata = pod.get("metadata") or {}
        status = pod.get("status") or {}
        pod_name = metadata.get("name")
        if not pod_name:
            continue
        phase = status.get("phase")
        if phase not in _POD_PHASES:
            phase = "Unknown"
        namespace = metadata.get("namespace") or default_namespace

        for cs in status.get("containerStatuses") or []:
            if not isinstance(cs, dict) or not cs.get("name"):
                continue
            terminated = (cs.get("lastState") or {}).get("terminated") or {}
            exit_code = terminated.get("exitCode")
            statuses.append(
                PodStatus(
                    pod_name=str(pod_name),
                    namespace=str(namespace),
                    container_name=str(cs["name"]),
                    phase=phase,
                    restart_count=int(cs.get("restartCount") or 0),
                    exit_code=int(exit_code) if isinstance(exit_code, int) else None,
                    last_termination_reason=terminated.get("reason"),
                    last_finished_at=normalize_timestamp(terminated.get("finishedAt")),
                )
            )
    return statuses


def parse_events(body: dict[str, object], default_namespace: str) -> list[RawEvent]:
    """Extract events from an EventList; items without a uid are dropped."""
    items = body.get("items")
    if not isinstance(items, list):
        return []

    events: list[RawEvent] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        metadata = item.get("metadata") or {}
        uid = metadata.get("uid")
        if not uid:
            continue
        involved = item.get("involvedObject") or {}
        source = item.get("source") or {}
        count = item.get("count")
        events.append(
            RawEvent(
                uid=str(uid),
                namespace=str(metadata.get("namespace") or default_namespace),
                name=str(involved.get("name") or "unknown"),
                kind=str(involved.get("kind") or "unknown"),
                reason=str(item.get("reason") or ""),
                message=str(item.get("message") or ""),
                type=str(item.get("type") or "Normal"),
                source_component=source.get("component"),
                source_host=source.get("host"),
                first_timestamp=normalize_timestamp(item.get("firstTimestamp")),
                last_timestamp=normalize_timestamp(item.get("lastTimestamp") or item.get("eventTime")),
                count=count if isinstance(count, int) and count > 0 else 1,
            )
        )
    return events


# --- HTTP client ---


class KubernetesRuntime:
    """ClusterRuntime backed by the cluster's REST API (bearer-token auth)."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.timeout = timeout

    async def _get(self, cluster: ClusterRecord, path: str) -> dict[str, object]:
        url = f"{cluster['endpoint'].rstrip('/')}{path}"
        headers = {"Authorization": f"Bearer {cluster['token']}", "Accept": "application/json"}
        try:
            verify = _cluster_ssl_verify(cluster)
        except (ValueError, ssl.SSLError) as exc:
            msg = f"Invalid CA data for cluster {cluster['name']}"
            raise KubernetesAPIError(msg) from exc
        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=verify) as client:
                response = await client.get(url, headers=headers)
                _ = response.raise_for_status()
                data: object = response.json()
        except httpx.TimeoutException as exc:
            msg = f"Kubernetes API timed out after {self.timeout}s: {url}"
            raise KubernetesAPIError(msg) from exc
        except httpx.HTTPStatusError as exc:
            msg = f"Kubernetes API returned HTTP {exc.response.status_code} for {path}"
            raise KubernetesAPIError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"Cannot connect to Kubernetes API at {cluster['endpoint']}: {exc}"
            raise KubernetesAPIError(msg) from exc
        except ValueError as exc:
            msg = f"Kubernetes API returned a non-JSON body for {path}"
            raise KubernetesAPIError(msg) from exc

        if not isinstance(data, dict):
            msg = f"Unexpected Kubernetes API response for {path}"
            raise KubernetesAPIError(msg)
        return data

    async def list_pods(self, cluster: ClusterRecord) -> list[PodStatus]:
        body = await self._get(cluster, f"/api/v1/namespaces/{cluster['namespace']}/pods")
        return parse_pods(body, cluster["namespace"])

    async def list_events(self, cluster: ClusterRecord) -> list[RawEvent]:
        body = await self._get(cluster, f"/api/v1/namespaces/{cluster['namespace']}/events")
        return parse_events(body, cluster["namespace"])
