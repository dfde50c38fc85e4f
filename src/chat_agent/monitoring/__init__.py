"""Monitoring module for routing metrics."""

from .state_metrics import (
    RoutingMetricsCollector,
    InvocationMetric,
    TurnMetric,
    get_routing_metrics_collector
)

__all__ = [
    'RoutingMetricsCollector',
    'InvocationMetric',
    'TurnMetric',
    'get_routing_metrics_collector'
]
