"""Prometheus metrics for SupportFlow.

Counters and histograms for processing passes, the tool-calling loop and
guardrail decisions.
"""

from prometheus_client import Counter, Histogram, start_http_server

from supportflow.observability.logging import get_logger

logger = get_logger(__name__)

PASS_COUNT = Counter(
    "supportflow_pass_count_total",
    "Processing passes by outcome",
    labelnames=["outcome"],
)

PASS_LATENCY = Histogram(
    "supportflow_pass_latency_seconds",
    "Processing pass latency in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

STAGE_LATENCY = Histogram(
    "supportflow_stage_latency_seconds",
    "Latency of individual pipeline stages",
    labelnames=["stage"],
    buckets=(0.001, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

LOCK_SKIPS = Counter(
    "supportflow_lock_skips_total",
    "Passes skipped because another worker held the conversation lock",
)

TOOL_CALLS = Counter(
    "supportflow_tool_calls_total",
    "Tool invocations by tool and result",
    labelnames=["tool", "result"],
)

LOOP_ITERATIONS = Histogram(
    "supportflow_loop_iterations",
    "Planner iterations per pass",
    buckets=(1, 2, 3, 5, 8, 10, 15, 20),
)

LOOP_EXHAUSTED = Counter(
    "supportflow_loop_exhausted_total",
    "Passes that hit the iteration cap",
)

GUARDRAIL_ACTIONS = Counter(
    "supportflow_guardrail_actions_total",
    "Guardrail decisions by stage and action",
    labelnames=["stage", "action"],
)

CONFIDENCE_SCORE = Histogram(
    "supportflow_confidence_score",
    "Confidence scores assigned to candidate replies",
    buckets=(0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0),
)

SCHEDULER_FAILURES = Counter(
    "supportflow_scheduler_failures_total",
    "Processing passes that raised inside a scheduler tick",
)


def start_metrics_server(port: int) -> None:
    """Expose the default registry for scraping on a background thread."""
    start_http_server(port)
    logger.info("metrics_server_started", port=port)
