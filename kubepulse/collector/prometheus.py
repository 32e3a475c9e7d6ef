"""MetricCollector: runs a fixed query catalog against Prometheus-compatible sources.

Every catalog query is an independent read with its own failure domain: the
queries of a source run concurrently, a query that errors or times out is
logged and skipped, and the remaining results are still stored.  Series whose
value does not parse as a finite float are dropped.
"""

import asyncio
import logging
import math
import sqlite3
import time
from datetime import datetime
from typing import TypedDict

import httpx

from kubepulse.observability.metrics import METRIC_QUERIES_TOTAL, METRIC_QUERY_DURATION, SAMPLES_STORED_TOTAL
from kubepulse.store.clusters import mark_target_scraped
from kubepulse.store.db import utc_iso
from kubepulse.store.metrics import save_metric_samples
from kubepulse.store.models import MetricSampleRecord, PrometheusTargetRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15

# Named queries and the metric_type each result is classified as.
# Each entry: (metric_name, metric_type, promql)
QUERY_CATALOG: list[tuple[str, str, str]] = [
    (
        "node_cpu_usage",
        "cpu",
        '100 - (avg by (instance) (irate(node_cpu_seconds_total{mode="idle"}[5m])) * 100)',
    ),
    (
        "node_memory_usage",
        "memory",
        "(1 - (node_memory_MemAvailable_bytes / node_memory_MemTotal_bytes)) * 100",
    ),
    (
        "node_disk_usage",
        "disk",
        "100 - ((node_filesystem_avail_bytes * 100) / node_filesystem_size_bytes)",
    ),
    ("node_load_average", "cpu", "node_load1"),
    ("pod_count_total", "pod_count", "count(kube_pod_info)"),
    (
        "pod_cpu_usage",
        "cpu",
        "sum(rate(container_cpu_usage_seconds_total[5m])) by (pod, namespace)",
    ),
    (
        "pod_memory_usage",
        "memory",
        "sum(container_memory_working_set_bytes) by (pod, namespace)",
    ),
    ("network_bytes_received", "network", "rate(node_network_receive_bytes_total[5m])"),
    ("network_bytes_transmitted", "network", "rate(node_network_transmit_bytes_total[5m])"),
]


class PrometheusQueryError(Exception):
    """A metrics source could not answer a query (unreachable, HTTP error, or error body)."""


class PromSample(TypedDict):
    value: float
    labels: dict[str, str]


class CollectionResult(TypedDict):
    target_id: int
    target_name: str
    collected: int
    failed_queries: dict[str, str]  # query name -> error


def metric_unit(metric_name: str) -> str:
    """Derive the stored unit from a catalog query name."""
    if metric_name.startswith("node_") and metric_name.endswith("_usage"):
        return "percentage"
    if metric_name == "pod_cpu_usage":
        return "cores"
    if "bytes" in metric_name or metric_name == "pod_memory_usage":
        return "bytes"
    if "count" in metric_name:
        return "count"
    if "load" in metric_name:
        return "load"
    return "value"


def parse_vector(result: list[object]) -> list[PromSample]:
    """Extract (value, labels) pairs from an instant-vector result, dropping malformed series."""
    samples: list[PromSample] = []
    for series in result:
        if not isinstance(series, dict):
            continue
        value = series.get("value")
        if not isinstance(value, list) or len(value) < 2:
            continue
        try:
            number = float(str(value[1]))
        except (ValueError, TypeError):
            continue
        if math.isnan(number) or math.isinf(number):
            continue
        metric = series.get("metric")
        labels = {str(k): str(v) for k, v in metric.items()} if isinstance(metric, dict) else {}
        samples.append(PromSample(value=number, labels=labels))
    return samples


async def query_prometheus(
    client: httpx.AsyncClient,
    endpoint: str,
    expression: str,
    auth_token: str | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> list[PromSample]:
    """Run one instant query against ``{endpoint}/api/v1/query``.

    Raises:
        PrometheusQueryError: On transport failure, timeout, non-2xx status, or a
            response that is not a successful vector/scalar envelope.
    """
    headers = {"Authorization": f"Bearer {auth_token}"} if auth_token else {}
    try:
        resp = await client.get(
            f"{endpoint.rstrip('/')}/api/v1/query",
            params={"query": expression},
            headers=headers,
            timeout=timeout,
        )
        _ = resp.raise_for_status()
    except httpx.TimeoutException as exc:
        msg = f"Prometheus query timed out after {timeout}s at {endpoint}"
        raise PrometheusQueryError(msg) from exc
    except httpx.HTTPStatusError as exc:
        msg = f"Prometheus returned HTTP {exc.response.status_code}: {exc.response.text[:200]}"
        raise PrometheusQueryError(msg) from exc
    except httpx.HTTPError as exc:
        msg = f"Cannot connect to Prometheus at {endpoint}: {exc}"
        raise PrometheusQueryError(msg) from exc

    try:
        body: object = resp.json()
    except ValueError as exc:
        msg = "Prometheus returned a non-JSON body"
        raise PrometheusQueryError(msg) from exc

    if not isinstance(body, dict) or body.get("status") != "success":
        error = body.get("error", "unknown error") if isinstance(body, dict) else "unexpected body"
        msg = f"Prometheus query failed: {error}"
        raise PrometheusQueryError(msg)

    data = body.get("data")
    result = data.get("result") if isinstance(data, dict) else None
    if isinstance(data, dict) and data.get("resultType") == "scalar":
        # Scalar results come back as a bare [ts, "value"] pair
        return parse_vector([{"metric": {}, "value": result}])
    if isinstance(result, list):
        return parse_vector(result)
    msg = "Prometheus response has no result list"
    raise PrometheusQueryError(msg)


def build_samples(
    cluster_id: int,
    metric_name: str,
    metric_type: str,
    results: list[PromSample],
    timestamp: str,
) -> list[MetricSampleRecord]:
    """Normalize query results into metric sample records (one per series)."""
    unit = metric_unit(metric_name)
    return [
        MetricSampleRecord(
            id=0,  # Will be set by SQLite
            cluster_id=cluster_id,
            metric_type=metric_type,
            metric_name=metric_name,
            value=r["value"],
            unit=unit,
            node_name=r["labels"].get("instance") or r["labels"].get("node"),
            namespace=r["labels"].get("namespace"),
            resource_name=r["labels"].get("pod") or r["labels"].get("container"),
            labels=r["labels"],
            timestamp=timestamp,
        )
        for r in results
    ]


async def collect_target(
    conn: sqlite3.Connection,
    cluster_id: int,
    target: PrometheusTargetRecord,
    *,
    client: httpx.AsyncClient,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    now: datetime | None = None,
    catalog: list[tuple[str, str, str]] | None = None,
) -> CollectionResult:
    """Run the whole catalog against one source and store what came back.

    The source's last_scrape_at is updated unless every query failed.
    """
    catalog = catalog if catalog is not None else QUERY_CATALOG
    timestamp = utc_iso(now)

    async def _timed(name: str, promql: str) -> list[PromSample]:
        start = time.monotonic()
        try:
            return await query_prometheus(client, target["endpoint"], promql, target["auth_token"], timeout)
        finally:
            METRIC_QUERY_DURATION.labels(query=name).observe(time.monotonic() - start)

    gathered = await asyncio.gather(*[_timed(name, promql) for name, _, promql in catalog], return_exceptions=True)

    samples: list[MetricSampleRecord] = []
    failed: dict[str, str] = {}
    for (name, metric_type, _), result in zip(catalog, gathered, strict=True):
        if isinstance(result, BaseException):
            logger.warning("Query %s failed for target %s: %s", name, target["name"], result)
            METRIC_QUERIES_TOTAL.labels(query=name, status="error").inc()
            failed[name] = str(result)
            continue
        METRIC_QUERIES_TOTAL.labels(query=name, status="success").inc()
        samples.extend(build_samples(cluster_id, name, metric_type, result, timestamp))

    if samples:
        save_metric_samples(conn, samples)
        for s in samples:
            SAMPLES_STORED_TOTAL.labels(metric_type=s["metric_type"]).inc()

    if len(failed) < len(catalog):
        mark_target_scraped(conn, target["id"], timestamp)

    logger.info(
        "Collected %d samples from %s (%d/%d queries failed)",
        len(samples),
        target["name"],
        len(failed),
        len(catalog),
    )
    return CollectionResult(
        target_id=target["id"],
        target_name=target["name"],
        collected=len(samples),
        failed_queries=failed,
    )


async def collect_cluster_metrics(
    conn: sqlite3.Connection,
    cluster_id: int,
    targets: list[PrometheusTargetRecord],
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    now: datetime | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[CollectionResult]:
    """Collect from every source of a cluster concurrently."""
    if client is None:
        async with httpx.AsyncClient() as owned:
            return await collect_cluster_metrics(conn, cluster_id, targets, timeout=timeout, now=now, client=owned)

    return list(
        await asyncio.gather(
            *[collect_target(conn, cluster_id, t, client=client, timeout=timeout, now=now) for t in targets]
        )
    )
