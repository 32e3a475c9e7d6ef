"""Tests for the SQLite store: schema, keyed upserts and alert state transitions."""

import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest
from helpers import NOW

from kubepulse.store.alerts import (
    acknowledge_alert,
    create_alert,
    find_open_alert,
    get_alerts,
    get_open_smart_alerts,
    resolve_alert,
    resolve_smart_alert,
    upsert_smart_alert,
)
from kubepulse.store.analysis import (
    count_suggestions,
    get_restart_trends,
    get_suggestions,
    save_suggestions,
    upsert_restart_trend,
)
from kubepulse.store.clusters import (
    get_active_clusters,
    get_cluster,
    get_enabled_targets,
    mark_target_scraped,
    save_cluster,
    save_prometheus_target,
)
from kubepulse.store.db import get_connection, init_schema, loads, parse_ts, utc_iso
from kubepulse.store.metrics import get_latest_health_score, get_metrics_since, save_health_score
from kubepulse.store.models import (
    ClusterEventRecord,
    ClusterRecord,
    HealthScoreRecord,
    PodHealthRecord,
    PodRestartTrendRecord,
    SuggestionRecord,
)
from kubepulse.store.notifications import (
    append_timeline_event,
    get_enabled_channels,
    get_incident,
    get_open_incidents,
    save_channel,
    save_incident,
    update_incident,
)
from kubepulse.store.pods import (
    get_event,
    get_events_since,
    get_pod_health,
    get_pod_samples_since,
    upsert_cluster_event,
    upsert_pod_health,
)


def _pod(restarts: int = 0, status: str = "Running", reason: str | None = None, at: datetime = NOW) -> PodHealthRecord:
    return PodHealthRecord(
        cluster_id=1,
        pod_name="api-7d9f",
        namespace="default",
        container_name="api",
        restart_count=restarts,
        last_restart_time=None,
        exit_code=None,
        exit_reason=reason,
        oom_killed=reason == "OOMKilled",
        status=status,
        updated_at=utc_iso(at),
    )


def _event(uid: str, *, count: int = 1, last: datetime | None = NOW, reason: str = "BackOff") -> ClusterEventRecord:
    return ClusterEventRecord(
        id=0,
        cluster_id=1,
        event_uid=uid,
        namespace="default",
        name="api-7d9f",
        kind="Pod",
        reason=reason,
        message="Back-off restarting failed container",
        type="Warning",
        source_component="kubelet",
        source_host="node-1",
        first_timestamp=utc_iso(NOW - timedelta(minutes=30)),
        last_timestamp=utc_iso(last) if last else None,
        count=count,
        created_at=utc_iso(NOW),
    )


class TestTimestamps:
    def test_utc_iso_is_fixed_width(self) -> None:
        a = utc_iso(datetime(2026, 1, 1, 0, 0, 0, tzinfo=UTC))
        b = utc_iso(datetime(2026, 1, 1, 0, 0, 0, 500, tzinfo=UTC))
        assert len(a) == len(b)
        assert a < b

    def test_naive_treated_as_utc(self) -> None:
        assert utc_iso(datetime(2026, 1, 1, 12, 0)) == "2026-01-01T12:00:00.000000+00:00"

    def test_offset_converted_to_utc(self) -> None:
        ts = parse_ts("2026-01-01T13:00:00+01:00")
        assert ts == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def test_zulu_suffix(self) -> None:
        assert parse_ts("2026-01-01T12:00:00Z") == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class TestSchema:
    def test_init_is_idempotent(self, db: sqlite3.Connection) -> None:
        init_schema(db)
        init_schema(db)
        tables = {r[0] for r in db.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert {"clusters", "cluster_metrics", "monitoring_alerts", "smart_alerts", "incidents"} <= tables

    def test_empty_path_rejected(self) -> None:
        with pytest.raises(ValueError, match="not configured"):
            get_connection("")

    def test_corrupt_json_falls_back(self) -> None:
        assert loads("{not json", {}) == {}
        assert loads(None, []) == []


class TestClusters:
    def test_active_clusters_only(self, db: sqlite3.Connection) -> None:
        save_cluster(db, name="a", owner="ops", endpoint="https://a", token="t")
        save_cluster(db, name="b", owner="ops", endpoint="https://b", token="t", is_active=False)
        names = [c["name"] for c in get_active_clusters(db)]
        assert names == ["a"]

    def test_get_unknown_cluster(self, db: sqlite3.Connection) -> None:
        assert get_cluster(db, 999) is None

    def test_target_endpoint_trailing_slash_stripped(self, db: sqlite3.Connection, cluster: ClusterRecord) -> None:
        save_prometheus_target(db, cluster_id=cluster["id"], name="prom", endpoint="http://prom:9090/")
        [target] = get_enabled_targets(db, cluster["id"])
        assert target["endpoint"] == "http://prom:9090"
        assert target["last_scrape_at"] is None

    def test_disabled_target_skipped(self, db: sqlite3.Connection, cluster: ClusterRecord) -> None:
        save_prometheus_target(db, cluster_id=cluster["id"], name="off", endpoint="http://x", enabled=False)
        assert get_enabled_targets(db, cluster["id"]) == []

    def test_mark_scraped(self, db: sqlite3.Connection, cluster: ClusterRecord) -> None:
        target_id = save_prometheus_target(db, cluster_id=cluster["id"], name="prom", endpoint="http://prom")
        mark_target_scraped(db, target_id, utc_iso(NOW))
        [target] = get_enabled_targets(db, cluster["id"])
        assert target["last_scrape_at"] == utc_iso(NOW)


class TestMetrics:
    def test_window_and_ordering(self, db: sqlite3.Connection, add_samples: Callable[..., None]) -> None:
        add_samples(1, [("cpu", 10.0, "n1")], at=NOW - timedelta(minutes=10))
        add_samples(1, [("cpu", 20.0, "n1")], at=NOW - timedelta(minutes=2))
        add_samples(1, [("memory", 30.0, "n1")], at=NOW - timedelta(minutes=1))

        recent = get_metrics_since(db, 1, utc_iso(NOW - timedelta(minutes=5)))
        assert [s["value"] for s in recent] == [30.0, 20.0]
        cpu_only = get_metrics_since(db, 1, utc_iso(NOW - timedelta(hours=1)), metric_type="cpu")
        assert [s["value"] for s in cpu_only] == [20.0, 10.0]
        assert cpu_only[0]["labels"] == {"instance": "n1"}

    def test_latest_health_score(self, db: sqlite3.Connection) -> None:
        base = HealthScoreRecord(
            cluster_id=1,
            overall_score=90.0,
            cpu_score=90.0,
            memory_score=90.0,
            disk_score=90.0,
            network_score=95.0,
            pod_health_score=100.0,
            node_count=1,
            healthy_nodes=1,
            total_pods=0,
            healthy_pods=0,
            calculated_at=utc_iso(NOW - timedelta(minutes=1)),
        )
        save_health_score(db, base)
        save_health_score(db, {**base, "overall_score": 70.0, "calculated_at": utc_iso(NOW)})

        latest = get_latest_health_score(db, 1)
        assert latest is not None
        assert latest["overall_score"] == 70.0
        assert get_latest_health_score(db, 2) is None


class TestAlerts:
    def _create(self, db: sqlite3.Connection, node: str | None = "n1") -> int:
        return create_alert(
            db,
            cluster_id=1,
            alert_type="cpu_pressure",
            severity="warning",
            threshold_value=80.0,
            current_value=85.0,
            message="CPU high",
            node_name=node,
        )

    def test_second_open_alert_for_key_rejected(self, db: sqlite3.Connection) -> None:
        self._create(db)
        with pytest.raises(sqlite3.IntegrityError):
            self._create(db)

    def test_null_node_is_a_key(self, db: sqlite3.Connection) -> None:
        self._create(db, node=None)
        with pytest.raises(sqlite3.IntegrityError):
            self._create(db, node=None)
        assert find_open_alert(db, 1, "cpu_pressure", None) is not None

    def test_resolved_alert_frees_key(self, db: sqlite3.Connection) -> None:
        first = self._create(db)
        resolve_alert(db, first)
        second = self._create(db)
        assert second != first
        assert find_open_alert(db, 1, "cpu_pressure", "n1")["id"] == second  # type: ignore[index]

    def test_acknowledge_then_resolve_is_monotonic(self, db: sqlite3.Connection) -> None:
        alert_id = self._create(db)
        acked = acknowledge_alert(db, alert_id)
        assert acked is not None
        assert acked["acknowledged"] is True
        assert acked["resolved"] is False

        first = resolve_alert(db, alert_id, now=utc_iso(NOW))
        again = resolve_alert(db, alert_id, now=utc_iso(NOW + timedelta(hours=1)))
        acked_again = acknowledge_alert(db, alert_id)
        assert first is not None and again is not None and acked_again is not None
        assert again["resolved_at"] == first["resolved_at"] == utc_iso(NOW)
        assert acked_again["resolved"] is True
        assert acked_again["acknowledged"] is True

    def test_unknown_alert_returns_none(self, db: sqlite3.Connection) -> None:
        assert acknowledge_alert(db, 404) is None
        assert resolve_alert(db, 404) is None

    def test_get_alerts_excludes_resolved_by_default(self, db: sqlite3.Connection) -> None:
        alert_id = self._create(db)
        resolve_alert(db, alert_id)
        assert get_alerts(db, 1) == []
        assert len(get_alerts(db, 1, include_resolved=True)) == 1


class TestSmartAlerts:
    def test_upsert_refreshes_open_alert(self, db: sqlite3.Connection) -> None:
        kwargs = {
            "cluster_id": 1,
            "alert_type": "oomkill",
            "severity": "critical",
            "resource_type": "pod",
            "resource_name": "api-7d9f",
            "title": "Pod OOMKilled: api-7d9f",
        }
        first_id, created = upsert_smart_alert(db, description="first", **kwargs)  # type: ignore[arg-type]
        second_id, created_again = upsert_smart_alert(db, description="second", **kwargs)  # type: ignore[arg-type]

        assert created is True
        assert created_again is False
        assert first_id == second_id
        [alert] = get_open_smart_alerts(db, 1)
        assert alert["description"] == "second"

    def test_resolve_keeps_first_timestamp(self, db: sqlite3.Connection) -> None:
        alert_id, _ = upsert_smart_alert(
            db,
            cluster_id=1,
            alert_type="crash_loop",
            severity="critical",
            resource_type="pod",
            resource_name="api",
            title="Crash Loop Detected: api",
            description="",
        )
        first = resolve_smart_alert(db, alert_id, now=utc_iso(NOW))
        again = resolve_smart_alert(db, alert_id, now=utc_iso(NOW + timedelta(minutes=5)))
        assert first is not None and again is not None
        assert again["resolved_at"] == utc_iso(NOW)
        assert get_open_smart_alerts(db, 1) == []


class TestPodHealth:
    def test_unchanged_state_not_sampled(self, db: sqlite3.Connection) -> None:
        assert upsert_pod_health(db, _pod()) is True
        assert upsert_pod_health(db, _pod(at=NOW + timedelta(minutes=1))) is False
        assert upsert_pod_health(db, _pod(restarts=1, at=NOW + timedelta(minutes=2))) is True

        [snapshot] = get_pod_health(db, 1)
        assert snapshot["restart_count"] == 1
        assert snapshot["updated_at"] == utc_iso(NOW + timedelta(minutes=2))
        samples = get_pod_samples_since(db, 1, utc_iso(NOW - timedelta(hours=1)))
        assert [s["restart_count"] for s in samples] == [0, 1]

    def test_status_change_sampled(self, db: sqlite3.Connection) -> None:
        upsert_pod_health(db, _pod())
        assert upsert_pod_health(db, _pod(status="Failed", reason="Error")) is True


class TestEvents:
    def test_repeat_observation_merges(self, db: sqlite3.Connection) -> None:
        upsert_cluster_event(db, _event("uid-1", count=3, last=NOW - timedelta(minutes=5)))
        upsert_cluster_event(db, _event("uid-1", count=5, last=NOW))
        # A stale re-read must not move count or last_timestamp backwards
        upsert_cluster_event(db, _event("uid-1", count=2, last=NOW - timedelta(minutes=10)))

        event = get_event(db, 1, "uid-1")
        assert event is not None
        assert event["count"] == 5
        assert event["last_timestamp"] == utc_iso(NOW)
        assert db.execute("SELECT COUNT(*) FROM cluster_events").fetchone()[0] == 1

    def test_events_since_filters_and_orders(self, db: sqlite3.Connection) -> None:
        upsert_cluster_event(db, _event("old", last=NOW - timedelta(hours=3)))
        upsert_cluster_event(db, _event("b", last=NOW - timedelta(minutes=1)))
        upsert_cluster_event(db, _event("a", last=NOW - timedelta(minutes=2), reason="Unhealthy"))

        events = get_events_since(db, 1, utc_iso(NOW - timedelta(hours=2)))
        assert [e["event_uid"] for e in events] == ["a", "b"]
        probes = get_events_since(db, 1, utc_iso(NOW - timedelta(hours=2)), reasons=("Unhealthy",))
        assert [e["event_uid"] for e in probes] == ["a"]

    def test_limit_keeps_newest(self, db: sqlite3.Connection) -> None:
        for i in range(5):
            upsert_cluster_event(db, _event(f"e{i}", last=NOW - timedelta(minutes=10 - i)))
        events = get_events_since(db, 1, utc_iso(NOW - timedelta(hours=1)), limit=2)
        assert [e["event_uid"] for e in events] == ["e3", "e4"]


class TestAnalysisRecords:
    def test_trend_upsert_one_row_per_hour(self, db: sqlite3.Connection) -> None:
        trend = PodRestartTrendRecord(
            cluster_id=1,
            pod_name="api",
            namespace="default",
            time_window=utc_iso(NOW),
            restart_count=3,
            avg_restart_interval=60.0,
            trend_direction="increasing",
            trend_score=0.4,
        )
        upsert_restart_trend(db, trend)
        upsert_restart_trend(db, {**trend, "trend_score": 0.9})
        [stored] = get_restart_trends(db, 1)
        assert stored["trend_score"] == 0.9

    def test_suggestions_ordered_by_priority(self, db: sqlite3.Connection) -> None:
        alert_id, _ = upsert_smart_alert(
            db,
            cluster_id=1,
            alert_type="oomkill",
            severity="critical",
            resource_type="pod",
            resource_name="api",
            title="t",
            description="d",
        )

        def _s(priority: int, title: str) -> SuggestionRecord:
            return SuggestionRecord(
                id=0,
                alert_id=alert_id,
                suggestion_type="immediate",
                priority=priority,
                title=title,
                description="",
                action_steps=["kubectl describe pod api"],
                estimated_impact="high",
                implementation_difficulty="easy",
                ai_confidence=0.8,
                created_at=utc_iso(NOW),
            )

        save_suggestions(db, [_s(3, "later"), _s(1, "first")])
        assert count_suggestions(db, alert_id) == 2
        stored = get_suggestions(db, alert_id)
        assert [s["title"] for s in stored] == ["first", "later"]
        assert stored[0]["action_steps"] == ["kubectl describe pod api"]


class TestChannelsAndIncidents:
    def test_channel_scoping(self, db: sqlite3.Connection) -> None:
        save_channel(db, owner="ops", kind="slack", name="all", target="https://hooks.test/all")
        save_channel(db, owner="ops", kind="slack", name="c1", target="https://hooks.test/1", cluster_id=1)
        save_channel(db, owner="ops", kind="slack", name="c2", target="https://hooks.test/2", cluster_id=2)
        save_channel(db, owner="ops", kind="email", name="off", target="a@test.com", enabled=False)
        save_channel(db, owner="other", kind="slack", name="x", target="https://hooks.test/x")

        names = [c["name"] for c in get_enabled_channels(db, "ops", 1)]
        assert names == ["all", "c1"]

    def test_incident_lifecycle(self, db: sqlite3.Connection) -> None:
        incident_id = save_incident(db, owner="ops", cluster_id=1, title="API down", severity="high")
        append_timeline_event(db, incident_id, {"timestamp": utc_iso(), "action": "note", "details": "paged"})
        update_incident(db, incident_id, status="resolved")
        update_incident(db, incident_id, status="closed")

        incident = get_incident(db, incident_id)
        assert incident is not None
        assert [e["action"] for e in incident["timeline_events"]] == ["opened", "note"]
        assert incident["status"] == "closed"
        assert incident["resolved_at"] is not None
        assert get_open_incidents(db) == []
