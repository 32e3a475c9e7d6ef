"""TypedDict models for persisted records.

Timestamps are ISO 8601 strings in UTC (see ``utc_iso``); JSON columns are
decoded into Python objects when rows are read back.
"""

from typing import Literal, TypedDict

MetricType = Literal["cpu", "memory", "disk", "network", "pod_count"]
AlertSeverity = Literal["info", "warning", "critical"]
ChannelSeverity = Literal["low", "medium", "high", "critical"]
SmartAlertType = Literal["oomkill", "crash_loop", "liveness_failed", "node_pressure"]
PodPhase = Literal["Running", "Pending", "Failed", "Succeeded", "Unknown"]
TrendDirection = Literal["increasing", "decreasing", "stable"]
CorrelationType = Literal["cascade", "resource_contention", "network", "configuration"]


class ClusterRecord(TypedDict):
    id: int
    name: str
    owner: str
    endpoint: str
    token: str
    ca_data: str | None  # base64 PEM bundle
    namespace: str
    is_active: bool
    created_at: str


class PrometheusTargetRecord(TypedDict):
    id: int
    cluster_id: int
    name: str
    endpoint: str
    auth_token: str | None
    enabled: bool
    last_scrape_at: str | None


class MetricSampleRecord(TypedDict):
    id: int
    cluster_id: int
    metric_type: str
    metric_name: str
    value: float
    unit: str
    node_name: str | None
    namespace: str | None
    resource_name: str | None
    labels: dict[str, str]
    timestamp: str


class HealthScoreRecord(TypedDict):
    cluster_id: int
    overall_score: float
    cpu_score: float
    memory_score: float
    disk_score: float
    network_score: float
    pod_health_score: float
    node_count: int
    healthy_nodes: int
    total_pods: int
    healthy_pods: int
    calculated_at: str


class AlertRecord(TypedDict):
    id: int
    cluster_id: int
    alert_type: str  # "{metric_type}_pressure"
    severity: str  # info | warning | critical
    threshold_value: float
    current_value: float
    node_name: str | None
    resource_name: str | None
    message: str
    acknowledged: bool
    resolved: bool
    resolved_at: str | None
    created_at: str
    updated_at: str


class SmartAlertRecord(TypedDict):
    id: int
    cluster_id: int
    alert_type: str
    severity: str
    resource_type: str  # pod | node | deployment
    resource_name: str
    namespace: str | None
    title: str
    description: str
    suggestion: str | None
    related_events: dict[str, object]
    is_resolved: bool
    resolved_at: str | None
    created_at: str
    updated_at: str


class PodHealthRecord(TypedDict):
    cluster_id: int
    pod_name: str
    namespace: str
    container_name: str
    restart_count: int
    last_restart_time: str | None
    exit_code: int | None
    exit_reason: str | None
    oom_killed: bool
    status: str
    updated_at: str


class PodHealthSampleRecord(TypedDict):
    id: int
    cluster_id: int
    pod_name: str
    namespace: str
    container_name: str
    restart_count: int
    exit_code: int | None
    exit_reason: str | None
    status: str
    observed_at: str


class ClusterEventRecord(TypedDict):
    id: int
    cluster_id: int
    event_uid: str
    namespace: str
    name: str
    kind: str
    reason: str
    message: str
    type: str  # Normal | Warning
    source_component: str | None
    source_host: str | None
    first_timestamp: str | None
    last_timestamp: str | None
    count: int
    created_at: str


class EventCorrelationRecord(TypedDict):
    id: int
    cluster_id: int
    correlation_id: str
    primary_event_id: int
    related_event_ids: list[int]
    root_cause_analysis: str
    confidence_score: float
    correlation_type: str
    affected_resources: list[dict[str, str]]
    created_at: str


class PodRestartTrendRecord(TypedDict):
    cluster_id: int
    pod_name: str
    namespace: str
    time_window: str  # start of the hour bucket
    restart_count: int
    avg_restart_interval: float  # seconds between successive samples
    trend_direction: str
    trend_score: float


class SuggestionRecord(TypedDict):
    id: int
    alert_id: int
    suggestion_type: str  # immediate | preventive | optimization
    priority: int  # 1 (highest) .. 5
    title: str
    description: str
    action_steps: list[str]
    estimated_impact: str
    implementation_difficulty: str
    ai_confidence: float
    created_at: str


class ChannelRecord(TypedDict):
    id: int
    owner: str
    cluster_id: int | None  # None = every cluster of the owner
    kind: str  # slack | email
    name: str
    target: str  # webhook URL or email address
    severity_threshold: str | None  # None = receive every severity
    enabled: bool


class IncidentRecord(TypedDict):
    id: int
    owner: str
    cluster_id: int
    title: str
    description: str
    severity: str  # low | medium | high | critical
    status: str  # open | investigating | resolved | closed
    timeline_events: list[dict[str, object]]
    started_at: str
    resolved_at: str | None
    updated_at: str
