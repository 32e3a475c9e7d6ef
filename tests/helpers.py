"""Shared test constants and a deterministic oracle for the analysis stages."""

from datetime import UTC, datetime

from kubepulse.analysis.oracle import ZERO_CORRELATION, ZERO_TREND, CorrelationVerdict, SuggestionDraft, TrendVerdict
from kubepulse.store.models import ClusterEventRecord, ClusterRecord, PodHealthSampleRecord, SmartAlertRecord

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


class StubOracle:
    """Deterministic oracle returning canned verdicts and recording what it was asked."""

    def __init__(
        self,
        correlation: CorrelationVerdict = ZERO_CORRELATION,
        trend: TrendVerdict = ZERO_TREND,
        suggestions: list[SuggestionDraft] | None = None,
    ) -> None:
        self.correlation = correlation
        self.trend = trend
        self.suggestions = suggestions or []
        self.correlation_calls: list[list[ClusterEventRecord]] = []
        self.trend_calls: list[list[PodHealthSampleRecord]] = []
        self.suggestion_calls: list[SmartAlertRecord] = []

    async def score_correlation(self, events: list[ClusterEventRecord]) -> CorrelationVerdict:
        self.correlation_calls.append(events)
        return self.correlation

    async def score_trend(self, samples: list[PodHealthSampleRecord]) -> TrendVerdict:
        self.trend_calls.append(samples)
        return self.trend

    async def generate_suggestions(self, alert: SmartAlertRecord, cluster: ClusterRecord) -> list[SuggestionDraft]:
        self.suggestion_calls.append(alert)
        return self.suggestions
