"""
OpenTelemetry Metrics

Counters and histograms for the background loops and inline gates.
Recording a metric before ``init_metrics`` is a no-op.
"""

import logging
from typing import Any, Dict, Optional

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, Resource

logger = logging.getLogger(__name__)

COUNTERS = {
    "outbox_published_total": "Outbox items published",
    "outbox_failed_total": "Outbox publish attempts that failed",
    "dlq_entries_total": "Items moved to the dead letter state",
    "inbox_processed_total": "Inbound messages handled for the first time",
    "inbox_duplicates_total": "Inbound messages answered from the cache",
    "inbox_failed_total": "Inbound handler invocations that failed",
    "saga_completed_total": "Sagas that completed all steps",
    "saga_compensated_total": "Sagas rolled back cleanly",
    "saga_failed_total": "Sagas whose rollback had failures",
    "scheduler_executed_total": "Scheduled items dispatched successfully",
    "scheduler_failed_total": "Scheduled dispatch attempts that failed",
}

HISTOGRAMS = {
    "batch_duration_seconds": ("Duration of one background loop tick", "s"),
}

_meter: Optional[metrics.Meter] = None
_counters: Dict[str, metrics.Counter] = {}
_histograms: Dict[str, metrics.Histogram] = {}


def init_metrics(
    service_name: str = "courier",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    export_interval_ms: int = 60000
) -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics and create the standard instruments.

    Args:
        service_name: Name of the service
        otlp_endpoint: OTLP exporter endpoint
        console_export: Enable console export for debugging
        export_interval_ms: Export interval in milliseconds
    """
    global _meter

    readers = []
    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

        readers.append(PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True),
            export_interval_millis=export_interval_ms
        ))
        logger.info(f"OTel metrics: OTLP exporter configured -> {otlp_endpoint}")

    if console_export:
        readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=export_interval_ms
        ))

    provider = MeterProvider(
        resource=Resource.create({SERVICE_NAME: service_name}),
        metric_readers=readers
    )
    metrics.set_meter_provider(provider)
    _meter = metrics.get_meter(service_name)

    for name, description in COUNTERS.items():
        _counters[name] = _meter.create_counter(name, description=description, unit="1")
    for name, (description, unit) in HISTOGRAMS.items():
        _histograms[name] = _meter.create_histogram(name, description=description, unit=unit)

    logger.info(f"OTel metrics initialized: {service_name}")
    return _meter


def record_counter(name: str, value: int = 1, attributes: Optional[Dict[str, Any]] = None):
    counter = _counters.get(name)
    if counter is not None:
        counter.add(value, attributes or {})


def record_histogram(name: str, value: float, attributes: Optional[Dict[str, Any]] = None):
    histogram = _histograms.get(name)
    if histogram is not None:
        histogram.record(value, attributes or {})
