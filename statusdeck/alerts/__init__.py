"""Rule evaluation, cooldowns, batching and templating for alerts."""

from .aggregator import AlertAggregator, build_digest
from .evaluator import AlertEvaluator, TriggeredAlert, evaluate_operator, match_status_change
from .flood_control import FloodControl
from .metric_registry import MetricRegistry
from .templates import TemplateRenderer, build_variable_context, render_template
from .unraid_events import UnraidEvent, UnraidEventProcessor

__all__ = [
    "AlertAggregator",
    "AlertEvaluator",
    "FloodControl",
    "MetricRegistry",
    "TemplateRenderer",
    "TriggeredAlert",
    "UnraidEvent",
    "UnraidEventProcessor",
    "build_digest",
    "build_variable_context",
    "evaluate_operator",
    "match_status_change",
    "render_template",
]
