"""
Monitoring cho support assistant
================================

- Counters / latency histograms theo lượt hội thoại (in-memory, mirror sang Redis nếu có)
- Health probes: Redis, knowledge base
- Export JSON hoặc Prometheus text format
"""

import json
import time
import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple, Callable, Deque

from schema import ResponseKind, EscalationReason
from redis_manager import RedisManager

logger = logging.getLogger(__name__)

PERCENTILES = (("p50", 0.5), ("p95", 0.95), ("p99", 0.99))


def series_key(name: str, labels: Dict[str, str] = None) -> str:
    """`turns_by_kind` + {"kind": "results"} → `turns_by_kind{kind=results}`"""
    if not labels:
        return name
    inner = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
    return name + "{" + inner + "}"


def _percentile(sorted_values: List[float], q: float) -> float:
    # nearest-rank trên danh sách đã sort
    idx = min(int(len(sorted_values) * q), len(sorted_values) - 1)
    return sorted_values[idx]


def summarize(values: List[float]) -> Dict[str, float]:
    if not values:
        empty = {"count": 0, "min": 0, "max": 0, "mean": 0}
        empty.update({label: 0 for label, _ in PERCENTILES})
        return empty

    ordered = sorted(values)
    summary = {
        "count": len(ordered),
        "min": ordered[0],
        "max": ordered[-1],
        "mean": sum(ordered) / len(ordered),
    }
    for label, q in PERCENTILES:
        summary[label] = _percentile(ordered, q)
    return summary


@dataclass
class ComponentHealth:
    name: str
    healthy: bool
    detail: str = ""
    latency_ms: float = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TurnStats:
    """Snapshot các chỉ số hội thoại tại một thời điểm."""
    total_turns: int = 0
    turns_by_kind: Dict[str, int] = field(default_factory=dict)
    latency_ms: Dict[str, float] = field(default_factory=dict)

    escalation_rate: float = 0
    escalations_by_reason: Dict[str, int] = field(default_factory=dict)
    low_confidence_rate: float = 0

    error_count: int = 0
    error_rate: float = 0

    redis_healthy: bool = False
    kb_loaded: bool = False
    uptime_seconds: float = 0
    generated_at: str = ""


class MetricsCollector:
    """
    Counters + histograms theo series key.

    Bản in-memory luôn được cập nhật. Khi RedisManager đang kết nối, mọi ghi
    được mirror sang `metrics:*` và đọc từ Redis để các worker thấy cùng số liệu.
    """

    def __init__(self, redis_manager: RedisManager = None, retention_hours: int = 24, max_samples: int = 10000):
        self.redis = redis_manager
        self.retention_seconds = retention_hours * 3600
        self.max_samples = max_samples

        self._counts: Counter = Counter()
        self._samples: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _mirrored(self) -> bool:
        return self.redis is not None and self.redis.is_connected

    def increment(self, name: str, value: int = 1, labels: Dict[str, str] = None) -> int:
        key = series_key(name, labels)
        with self._lock:
            self._counts[key] += value
            current = self._counts[key]

        if self._mirrored():
            self.redis.incrby(f"metrics:counter:{key}", value, ttl=self.retention_seconds)
        return current

    def get_counter(self, name: str, labels: Dict[str, str] = None) -> int:
        key = series_key(name, labels)
        if self._mirrored():
            return self.redis.get_int(f"metrics:counter:{key}")
        with self._lock:
            return self._counts[key]

    def counters_with_prefix(self, name: str) -> Dict[str, int]:
        """Mọi series có label của `name` → {"k=v": count} (in-memory)."""
        head = name + "{"
        with self._lock:
            return {key[len(head):-1]: count for key, count in self._counts.items() if key.startswith(head)}

    def observe(self, name: str, value: float, labels: Dict[str, str] = None) -> None:
        key = series_key(name, labels)
        with self._lock:
            bucket = self._samples.setdefault(key, deque(maxlen=self.max_samples))
            bucket.append(value)

        if self._mirrored():
            redis_key = f"metrics:histogram:{key}"
            self.redis.list_push(redis_key, value, ttl=self.retention_seconds)
            self.redis.list_trim(redis_key, -self.max_samples, -1)

    def get_histogram_stats(self, name: str, labels: Dict[str, str] = None) -> Dict[str, float]:
        key = series_key(name, labels)
        if self._mirrored():
            values = [float(v) for v in self.redis.list_range(f"metrics:histogram:{key}") if v is not None]
        else:
            with self._lock:
                values = list(self._samples.get(key, ()))
        return summarize(values)

    def clear(self) -> None:
        with self._lock:
            self._counts.clear()
            self._samples.clear()


class HealthRegistry:
    """Các probe có tên; mỗi probe trả về bool hoặc ComponentHealth."""

    def __init__(self):
        self._probes: Dict[str, Callable[[], Any]] = {}
        self.last: Dict[str, ComponentHealth] = {}

    def register_check(self, name: str, probe: Callable[[], Any]) -> None:
        self._probes[name] = probe

    def check(self, name: str) -> ComponentHealth:
        probe = self._probes.get(name)
        if probe is None:
            return ComponentHealth(name=name, healthy=False, detail="no probe registered")

        started = time.perf_counter()
        try:
            outcome = probe()
        except Exception as e:
            logger.warning(f"Health probe '{name}' raised: {e}")
            outcome = ComponentHealth(name=name, healthy=False, detail=str(e))

        if not isinstance(outcome, ComponentHealth):
            outcome = ComponentHealth(name=name, healthy=bool(outcome))
        outcome.latency_ms = (time.perf_counter() - started) * 1000
        self.last[name] = outcome
        return outcome

    def check_all(self) -> Dict[str, ComponentHealth]:
        return {name: self.check(name) for name in self._probes}

    def get_overall_health(self) -> Tuple[bool, Dict[str, ComponentHealth]]:
        results = self.check_all()
        return all(r.healthy for r in results.values()), results


def _prom_block(name: str, help_text: str, metric_type: str, samples: List[Tuple[str, Any]]) -> List[str]:
    lines = [f"# HELP {name} {help_text}", f"# TYPE {name} {metric_type}"]
    for labels, value in samples:
        lines.append(f"{name}{labels} {value}")
    return lines


class MonitoringDashboard:
    """Gom metrics + health của pipeline thành một snapshot."""

    def __init__(self, redis_manager: RedisManager = None, knowledge_base=None):
        self.redis = redis_manager
        self.knowledge_base = knowledge_base
        self.metrics = MetricsCollector(redis_manager)
        self.health = HealthRegistry()
        self.started_at = time.time()

        self.health.register_check("redis", self._probe_redis)
        self.health.register_check("knowledge_base", self._probe_knowledge_base)

    def _probe_redis(self) -> bool:
        return self.redis is not None and self.redis.is_connected and self.redis.ping()

    def _probe_knowledge_base(self) -> ComponentHealth:
        kb = self.knowledge_base
        if kb is None or kb.is_empty:
            return ComponentHealth(name="knowledge_base", healthy=False, detail="knowledge base is empty")
        return ComponentHealth(
            name="knowledge_base",
            healthy=True,
            metadata={"schemes": len(kb.schemes), "entry_points": len(kb.entry_points)},
        )

    # ==================== Recording ====================

    def record_turn(
        self,
        session_id: str,
        latency_ms: float,
        kind: Optional[ResponseKind],
        low_confidence: bool = False,
        escalation_reason: Optional[EscalationReason] = None,
        success: bool = True,
    ) -> None:
        kind_value = kind.value if kind is not None else "none"

        self.metrics.increment("turns_total")
        self.metrics.increment("turns_by_kind", labels={"kind": kind_value})
        self.metrics.observe("latency_ms", latency_ms)

        if low_confidence:
            self.metrics.increment("low_confidence_total")
        if escalation_reason is not None:
            self.metrics.increment("escalations_total")
            self.metrics.increment("escalations_by_reason", labels={"reason": escalation_reason.value})
        if not success:
            self.metrics.increment("errors_total")

        logger.debug(f"Turn recorded: session={session_id} kind={kind_value} latency={latency_ms:.1f}ms")

    def record_error(self, error_type: str, message: str = "") -> None:
        self.metrics.increment("errors_total")
        self.metrics.increment("errors_by_type", labels={"type": error_type})
        logger.error(f"Pipeline error recorded ({error_type}): {message}")

    # ==================== Snapshot ====================

    def _labelled(self, name: str, label: str, values) -> Dict[str, int]:
        counts = {}
        for value in values:
            count = self.metrics.get_counter(name, labels={label: value})
            if count:
                counts[value] = count
        return counts

    def get_dashboard_stats(self) -> TurnStats:
        now = time.time()
        total = self.metrics.get_counter("turns_total")
        denominator = total or 1
        errors = self.metrics.get_counter("errors_total")
        health = self.health.check_all()

        latency = self.metrics.get_histogram_stats("latency_ms")
        return TurnStats(
            total_turns=total,
            turns_by_kind=self._labelled("turns_by_kind", "kind", [k.value for k in ResponseKind]),
            latency_ms={key: latency[key] for key in ("mean", "p50", "p95", "p99")},
            escalation_rate=self.metrics.get_counter("escalations_total") / denominator,
            escalations_by_reason=self._labelled(
                "escalations_by_reason", "reason", [r.value for r in EscalationReason]
            ),
            low_confidence_rate=self.metrics.get_counter("low_confidence_total") / denominator,
            error_count=errors,
            error_rate=errors / denominator,
            redis_healthy=health["redis"].healthy,
            kb_loaded=health["knowledge_base"].healthy,
            uptime_seconds=now - self.started_at,
            generated_at=datetime.fromtimestamp(now).isoformat(),
        )

    def export_metrics(self, format: str = "json") -> str:
        stats = self.get_dashboard_stats()
        if format == "prometheus":
            return self._to_prometheus(stats)
        return json.dumps(asdict(stats), indent=2)

    def _to_prometheus(self, stats: TurnStats) -> str:
        lines = []
        lines += _prom_block("turns_total", "Dialog turns handled", "counter", [("", stats.total_turns)])
        lines += _prom_block(
            "turns_by_kind", "Dialog turns by response kind", "counter",
            [(f'{{kind="{k}"}}', v) for k, v in sorted(stats.turns_by_kind.items())],
        )
        lines += _prom_block(
            "escalations_by_reason", "Escalation recommendations by reason", "counter",
            [(f'{{reason="{r}"}}', v) for r, v in sorted(stats.escalations_by_reason.items())],
        )
        lines += _prom_block(
            "latency_ms", "Turn latency in milliseconds", "summary",
            [(f'{{quantile="{q}"}}', stats.latency_ms[label]) for label, q in PERCENTILES],
        )
        lines += _prom_block("errors_total", "Pipeline errors", "counter", [("", stats.error_count)])
        lines += _prom_block("uptime_seconds", "Seconds since start", "gauge", [("", f"{stats.uptime_seconds:.0f}")])
        return "\n".join(lines)


# ==================== Global instance ====================

_dashboard: Optional[MonitoringDashboard] = None


def get_monitoring_dashboard() -> MonitoringDashboard:
    global _dashboard
    if _dashboard is None:
        _dashboard = MonitoringDashboard()
    return _dashboard


def init_monitoring(redis_manager: RedisManager = None, knowledge_base=None) -> MonitoringDashboard:
    global _dashboard
    _dashboard = MonitoringDashboard(redis_manager=redis_manager, knowledge_base=knowledge_base)
    return _dashboard
