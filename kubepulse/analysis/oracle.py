"""Scoring oracles for correlation, trend and suggestion judgments.

The analyzers depend only on the ``Oracle`` protocol.  ``LLMOracle`` asks a
LangChain chat model for JSON replies; ``NullOracle`` answers every question
with a zero verdict and is used when no model is configured.

Every call goes through ``consult``, which bounds it with a timeout and turns
any failure (timeout, transport error, unparsable or invalid reply) into the
caller's fallback verdict.  Oracle trouble never fails a pass.
"""

import asyncio
import json
import logging
import re
from collections.abc import Awaitable
from typing import Literal, Protocol, TypeVar

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field, ValidationError

from kubepulse.analysis.llm import create_llm, llm_configured
from kubepulse.config import Settings
from kubepulse.observability.metrics import ORACLE_CALLS_TOTAL
from kubepulse.store.models import ClusterEventRecord, ClusterRecord, PodHealthSampleRecord, SmartAlertRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


# --- Verdict models ---


class CorrelationVerdict(BaseModel):
    """Whether a bucket of events shares a cause."""

    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    root_cause: str = ""
    correlation_type: Literal["cascade", "resource_contention", "network", "configuration"] = "cascade"


class TrendVerdict(BaseModel):
    """How concerning a pod's restart history is."""

    significance: float = Field(default=0.0, ge=0.0, le=1.0)
    direction: Literal["increasing", "decreasing", "stable"] = "stable"
    score: float = Field(default=0.0, ge=-1.0, le=1.0)


class SuggestionDraft(BaseModel):
    """One proposed remediation for a smart alert."""

    type: Literal["immediate", "preventive", "optimization"]
    priority: int = Field(ge=1, le=5)
    title: str = Field(min_length=1)
    description: str
    action_steps: list[str] = Field(default_factory=list)
    estimated_impact: Literal["high", "medium", "low"] = "medium"
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


ZERO_CORRELATION = CorrelationVerdict()
ZERO_TREND = TrendVerdict()


class Oracle(Protocol):
    async def score_correlation(self, events: list[ClusterEventRecord]) -> CorrelationVerdict: ...

    async def score_trend(self, samples: list[PodHealthSampleRecord]) -> TrendVerdict: ...

    async def generate_suggestions(self, alert: SmartAlertRecord, cluster: ClusterRecord) -> list[SuggestionDraft]: ...


async def consult(kind: str, call: Awaitable[T], fallback: T, timeout: float) -> T:
    """Await an oracle call, returning ``fallback`` on timeout or any failure."""
    try:
        result = await asyncio.wait_for(call, timeout)
    except TimeoutError:
        ORACLE_CALLS_TOTAL.labels(kind=kind, status="timeout").inc()
        logger.warning("Oracle %s call timed out after %.0fs", kind, timeout)
        return fallback
    except Exception as exc:
        ORACLE_CALLS_TOTAL.labels(kind=kind, status="error").inc()
        logger.warning("Oracle %s call failed: %s", kind, exc)
        return fallback
    ORACLE_CALLS_TOTAL.labels(kind=kind, status="success").inc()
    return result


# --- Null oracle ---


class NullOracle:
    """Judges nothing worth persisting."""

    async def score_correlation(self, events: list[ClusterEventRecord]) -> CorrelationVerdict:
        return ZERO_CORRELATION

    async def score_trend(self, samples: list[PodHealthSampleRecord]) -> TrendVerdict:
        return ZERO_TREND

    async def generate_suggestions(self, alert: SmartAlertRecord, cluster: ClusterRecord) -> list[SuggestionDraft]:
        return []


# --- LLM oracle ---

_CORRELATION_SYSTEM = (
    "You are a Kubernetes expert specializing in event correlation and root cause analysis. "
    "Analyze events to find causal relationships and provide actionable insights."
)

_CORRELATION_PROMPT = """\
Analyze these Kubernetes events that occurred within a 5-minute window and determine if they are correlated:

Events:
{events}

Please analyze:
1. Are these events related to each other?
2. What is the likely root cause?
3. What type of correlation is this? (cascade, resource_contention, network, configuration)
4. What is your confidence level (0.0 to 1.0)?

Respond with ONLY a JSON object (no markdown fences):
{{"is_correlated": true, "confidence": 0.0, "root_cause": "string", "type": "cascade"}}
"""

_TREND_SYSTEM = (
    "You are a Kubernetes reliability expert. "
    "Analyze pod restart patterns to identify concerning trends and their significance."
)

_TREND_PROMPT = """\
Analyze this pod restart trend data and determine the significance and direction:

Pod Data:
{samples}

Please analyze:
1. Is there a significant trend in restarts?
2. What direction is the trend? (increasing, decreasing, stable)
3. How concerning is this trend? (score from -1.0 to 1.0, where 1.0 is most concerning)
4. What is the significance level? (0.0 to 1.0)

Respond with ONLY a JSON object (no markdown fences):
{{"significance": 0.0, "direction": "stable", "score": 0.0, "analysis": "string explanation"}}
"""

_SUGGESTION_SYSTEM = (
    "You are a Kubernetes SRE expert. Generate specific, actionable suggestions for resolving and "
    "preventing issues. Focus on practical steps that can be implemented immediately."
)

_SUGGESTION_PROMPT = """\
Generate intelligent suggestions for this Kubernetes alert:

Alert Details:
- Type: {alert_type}
- Severity: {severity}
- Resource: {resource_name} ({resource_type})
- Namespace: {namespace}
- Description: {description}
- Current Suggestion: {suggestion}

Cluster Context:
- Endpoint: {endpoint}
- Namespace: {cluster_namespace}

Generate 2-3 specific, actionable suggestions with different approaches (immediate, preventive, optimization).

Respond with ONLY a JSON array (no markdown fences):
[{{"type": "immediate", "priority": 1, "title": "string", "description": "string",
   "action_steps": ["step1", "step2"], "estimated_impact": "high", "difficulty": "easy", "confidence": 0.8}}]
"""


def parse_json_reply(raw_text: str) -> object:
    """Decode a JSON reply, tolerating markdown code fences.

    Raises:
        json.JSONDecodeError: If the reply is not JSON.
    """
    # Strip markdown code fences (```json ... ```) that some models add
    stripped = re.sub(r"^```(?:json)?\s*\n?", "", raw_text.strip())
    stripped = re.sub(r"\n?```\s*$", "", stripped).strip()
    return json.loads(stripped)


class LLMOracle:
    """Oracle backed by a chat model."""

    def __init__(self, llm: BaseChatModel) -> None:
        self.llm = llm

    async def _ask(self, system: str, prompt: str) -> object:
        response = await self.llm.ainvoke([SystemMessage(content=system), HumanMessage(content=prompt)])
        return parse_json_reply(str(response.content))

    async def score_correlation(self, events: list[ClusterEventRecord]) -> CorrelationVerdict:
        context = [
            {
                "reason": e["reason"],
                "message": e["message"],
                "type": e["type"],
                "kind": e["kind"],
                "name": e["name"],
                "namespace": e["namespace"],
                "timestamp": e["last_timestamp"] or e["first_timestamp"] or e["created_at"],
            }
            for e in events
        ]
        data = await self._ask(_CORRELATION_SYSTEM, _CORRELATION_PROMPT.format(events=json.dumps(context, indent=2)))
        if not isinstance(data, dict):
            msg = "correlation reply is not a JSON object"
            raise ValueError(msg)
        if not data.get("is_correlated"):
            return CorrelationVerdict(confidence=0.0, root_cause=str(data.get("root_cause", "")))
        return CorrelationVerdict.model_validate(
            {
                "confidence": data.get("confidence", 0.0),
                "root_cause": data.get("root_cause", ""),
                "correlation_type": data.get("type"),
            }
        )

    async def score_trend(self, samples: list[PodHealthSampleRecord]) -> TrendVerdict:
        context = [
            {
                "timestamp": s["observed_at"],
                "restart_count": s["restart_count"],
                "status": s["status"],
                "exit_code": s["exit_code"],
                "exit_reason": s["exit_reason"],
            }
            for s in samples
        ]
        data = await self._ask(_TREND_SYSTEM, _TREND_PROMPT.format(samples=json.dumps(context, indent=2)))
        return TrendVerdict.model_validate(data)

    async def generate_suggestions(self, alert: SmartAlertRecord, cluster: ClusterRecord) -> list[SuggestionDraft]:
        prompt = _SUGGESTION_PROMPT.format(
            alert_type=alert["alert_type"],
            severity=alert["severity"],
            resource_name=alert["resource_name"],
            resource_type=alert["resource_type"],
            namespace=alert["namespace"],
            description=alert["description"],
            suggestion=alert["suggestion"],
            endpoint=cluster["endpoint"],
            cluster_namespace=cluster["namespace"],
        )
        data = await self._ask(_SUGGESTION_SYSTEM, prompt)
        if isinstance(data, dict):
            data = data.get("suggestions", [])
        if not isinstance(data, list):
            msg = "suggestion reply is not a JSON array"
            raise ValueError(msg)

        drafts: list[SuggestionDraft] = []
        for item in data:
            try:
                drafts.append(SuggestionDraft.model_validate(item))
            except ValidationError as exc:
                logger.warning("Dropping invalid suggestion draft: %s", exc.errors()[:1])
        return sorted(drafts, key=lambda d: d.priority)


def build_oracle(settings: Settings) -> Oracle:
    """LLM-backed oracle when the selected provider has a key, else the null oracle."""
    if not llm_configured(settings):
        logger.info("No LLM API key configured, analysis will use the null oracle")
        return NullOracle()
    return LLMOracle(create_llm(settings))
