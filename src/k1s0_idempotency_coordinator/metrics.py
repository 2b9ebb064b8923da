"""冪等処理の OpenTelemetry メトリクス定義"""

from __future__ import annotations

from opentelemetry import metrics

_meter = metrics.get_meter("k1s0.idempotency", version="0.1.0")

executions_total = _meter.create_counter(
    name="idempotency_executions_total",
    description="Number of operations actually executed by the coordinator",
    unit="1",
)

replays_total = _meter.create_counter(
    name="idempotency_replays_total",
    description="Number of duplicate requests served from a recorded outcome",
    unit="1",
)

conflicts_total = _meter.create_counter(
    name="idempotency_conflicts_total",
    description="Number of duplicate requests rejected (in-flight or key reuse mismatch)",
    unit="1",
)

evictions_total = _meter.create_counter(
    name="idempotency_evictions_total",
    description="Number of expired outcome records evicted",
    unit="1",
)

stuck_in_flight_total = _meter.create_counter(
    name="idempotency_stuck_in_flight_total",
    description="Number of records observed PENDING beyond the max in-flight duration",
    unit="1",
)
