"""
Routing Metrics for the Group Chat

Collects selector decisions, termination outcomes, participant invocations
and turn results so routing behaviour can be observed without reading logs.
"""

import time
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, asdict
from threading import Lock
from typing import Dict, List, Optional, Any

logger = logging.getLogger(__name__)


@dataclass
class InvocationMetric:
    """Metric for a single participant invocation"""
    session_id: str
    participant: str
    timestamp: float
    duration_ms: float
    success: bool
    error_type: Optional[str] = None


@dataclass
class TurnMetric:
    """Metric for one user turn through the group chat loop"""
    session_id: str
    timestamp: float
    duration_ms: float
    invocations: int
    outcome: str
    reason: str


class RoutingMetricsCollector:
    """
    Collects and aggregates metrics for group chat routing.

    Thread-safe; history is bounded so the collector can live for the whole
    process.
    """

    def __init__(self, max_history_size: int = 10000):
        self.max_history_size = max_history_size
        self._lock = Lock()

        self.invocation_history: deque = deque(maxlen=max_history_size)
        self.turn_history: deque = deque(maxlen=max_history_size)

        self.selection_counters: Dict[str, int] = defaultdict(int)
        self.selection_rule_counters: Dict[str, int] = defaultdict(int)
        self.termination_counters: Dict[str, int] = defaultdict(int)
        self.error_counters: Dict[str, int] = defaultdict(int)

        logger.info("RoutingMetricsCollector initialized")

    def record_selection(self, session_id: str, participant: Optional[str], rule: str):
        """Record one selector decision"""
        with self._lock:
            self.selection_counters[participant or "<not found>"] += 1
            self.selection_rule_counters[rule] += 1

        logger.debug(
            f"Recorded selection: {participant}",
            extra={"session_id": session_id, "rule": rule}
        )

    def record_termination(self, session_id: str, rule: str):
        """Record a termination that ended a turn"""
        with self._lock:
            self.termination_counters[rule] += 1

    def record_invocation(
        self,
        session_id: str,
        participant: str,
        duration_ms: float,
        success: bool,
        error_type: Optional[str] = None
    ):
        """Record one participant runtime call"""
        metric = InvocationMetric(
            session_id=session_id,
            participant=participant,
            timestamp=time.time(),
            duration_ms=duration_ms,
            success=success,
            error_type=error_type
        )
        with self._lock:
            self.invocation_history.append(metric)
            if not success:
                self.error_counters[error_type or "unknown"] += 1

    def record_turn(
        self,
        session_id: str,
        duration_ms: float,
        invocations: int,
        outcome: str,
        reason: str
    ):
        """Record the outcome of one user turn"""
        metric = TurnMetric(
            session_id=session_id,
            timestamp=time.time(),
            duration_ms=duration_ms,
            invocations=invocations,
            outcome=outcome,
            reason=reason
        )
        with self._lock:
            self.turn_history.append(metric)

    def get_invocation_metrics(self, time_window_minutes: int = 60) -> Dict[str, Any]:
        """Per-participant invocation counts and latency inside a time window"""
        cutoff = time.time() - time_window_minutes * 60

        with self._lock:
            recent: List[InvocationMetric] = [m for m in self.invocation_history if m.timestamp >= cutoff]

        by_participant: Dict[str, Dict[str, Any]] = {}
        for metric in recent:
            stats = by_participant.setdefault(
                metric.participant, {"count": 0, "failures": 0, "total_ms": 0.0}
            )
            stats["count"] += 1
            stats["total_ms"] += metric.duration_ms
            if not metric.success:
                stats["failures"] += 1

        for stats in by_participant.values():
            stats["avg_ms"] = stats.pop("total_ms") / stats["count"]

        return {
            "window_minutes": time_window_minutes,
            "total": len(recent),
            "by_participant": by_participant
        }

    def export_metrics(self) -> Dict[str, Any]:
        """Export all metrics as a plain dict"""
        with self._lock:
            turns = [asdict(t) for t in list(self.turn_history)[-20:]]
            summary = {
                "selections": dict(self.selection_counters),
                "selection_rules": dict(self.selection_rule_counters),
                "terminations": dict(self.termination_counters),
                "errors": dict(self.error_counters),
                "turns_recorded": len(self.turn_history),
                "recent_turns": turns
            }

        summary["invocations"] = self.get_invocation_metrics()
        return summary

    def reset_metrics(self):
        """Reset all metrics (useful for testing)"""
        with self._lock:
            self.invocation_history.clear()
            self.turn_history.clear()
            self.selection_counters.clear()
            self.selection_rule_counters.clear()
            self.termination_counters.clear()
            self.error_counters.clear()

        logger.info("All routing metrics reset")


# Global metrics collector instance
_routing_metrics_collector = None

def get_routing_metrics_collector() -> RoutingMetricsCollector:
    """Get singleton instance of RoutingMetricsCollector"""
    global _routing_metrics_collector

    if _routing_metrics_collector is None:
        _routing_metrics_collector = RoutingMetricsCollector()

    return _routing_metrics_collector
