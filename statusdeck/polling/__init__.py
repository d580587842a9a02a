"""Status and metric polling plus the live status fan-out."""

from .fanout import QueueSink, SubscriberRegistry, format_sse
from .metric_poller import MetricPoller
from .monitor import IntegrationMonitor, PollResult
from .status_poller import StatusPoller, build_mappings, compute_diff, resolve_card_status

__all__ = [
    "IntegrationMonitor",
    "MetricPoller",
    "PollResult",
    "QueueSink",
    "StatusPoller",
    "SubscriberRegistry",
    "build_mappings",
    "compute_diff",
    "format_sse",
    "resolve_card_status",
]
