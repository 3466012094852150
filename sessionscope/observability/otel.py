"""OpenTelemetry + Prometheus fallback wiring for sessionscope."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from sessionscope import config

logger = logging.getLogger("sessionscope.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None

_discovery_counter: Any | None = None
_discovery_latency_hist: Any | None = None
_scan_issue_counter: Any | None = None
_fast_path_counter: Any | None = None
_query_counter: Any | None = None
_query_latency_hist: Any | None = None

_prom_enabled = False
_prom_discovery_counter: Any | None = None
_prom_discovery_latency_hist: Any | None = None
_prom_scan_issue_counter: Any | None = None
_prom_fast_path_counter: Any | None = None
_prom_query_counter: Any | None = None
_prom_query_latency_hist: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _labels(**values: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in values.items()}


def initialize() -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider
    global _discovery_counter, _discovery_latency_hist, _scan_issue_counter
    global _fast_path_counter, _query_counter, _query_latency_hist
    global _prom_enabled
    global _prom_discovery_counter, _prom_discovery_latency_hist, _prom_scan_issue_counter
    global _prom_fast_path_counter, _prom_query_counter, _prom_query_latency_hist

    if _initialized:
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.debug("OpenTelemetry disabled (SESSIONSCOPE_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "sessionscope"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "sessionscope",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("sessionscope")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("sessionscope")

    _discovery_counter = meter.create_counter(
        "sessionscope_discovery_runs_total",
        unit="1",
        description="Project discovery passes by outcome",
    )
    _discovery_latency_hist = meter.create_histogram(
        "sessionscope_discovery_latency_ms",
        unit="ms",
        description="Wall time of project discovery passes",
    )
    _scan_issue_counter = meter.create_counter(
        "sessionscope_scan_issues_total",
        unit="1",
        description="Recoverable discovery failures by kind and strategy",
    )
    _fast_path_counter = meter.create_counter(
        "sessionscope_fast_path_total",
        unit="1",
        description="Scan signature checks by hit/miss",
    )
    _query_counter = meter.create_counter(
        "sessionscope_session_queries_total",
        unit="1",
        description="Session list queries by result source",
    )
    _query_latency_hist = meter.create_histogram(
        "sessionscope_session_query_latency_ms",
        unit="ms",
        description="Latency of session list queries",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _enabled = True

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_discovery_counter = Counter(
                "sessionscope_discovery_runs_total",
                "Project discovery passes by outcome",
                ["result"],
            )
            _prom_discovery_latency_hist = Histogram(
                "sessionscope_discovery_latency_ms",
                "Wall time of project discovery passes",
                ["result"],
            )
            _prom_scan_issue_counter = Counter(
                "sessionscope_scan_issues_total",
                "Recoverable discovery failures by kind and strategy",
                ["kind", "strategy"],
            )
            _prom_fast_path_counter = Counter(
                "sessionscope_fast_path_total",
                "Scan signature checks by hit/miss",
                ["result"],
            )
            _prom_query_counter = Counter(
                "sessionscope_session_queries_total",
                "Session list queries by result source",
                ["source"],
            )
            _prom_query_latency_hist = Histogram(
                "sessionscope_session_query_latency_ms",
                "Latency of session list queries",
                ["source"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown() -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if _meter_provider is not None:
            _meter_provider.shutdown()
    except Exception:
        pass
    try:
        if _trace_provider is not None:
            _trace_provider.shutdown()
    except Exception:
        pass
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_discovery(result: str, duration_ms: float, *, issues: list[tuple[str, str]] | None = None) -> None:
    """Count one discovery pass; ``issues`` holds ``(kind, strategy)`` pairs."""
    labels = _labels(result=result)
    if _enabled and _discovery_counter is not None:
        _discovery_counter.add(1, labels)
    if _enabled and _discovery_latency_hist is not None:
        _discovery_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_discovery_counter is not None:
        _prom_discovery_counter.labels(**labels).inc()
    if _prom_enabled and _prom_discovery_latency_hist is not None:
        _prom_discovery_latency_hist.labels(**labels).observe(max(0.0, float(duration_ms)))

    for kind, strategy in issues or []:
        issue_labels = _labels(kind=kind, strategy=strategy)
        if _enabled and _scan_issue_counter is not None:
            _scan_issue_counter.add(1, issue_labels)
        if _prom_enabled and _prom_scan_issue_counter is not None:
            _prom_scan_issue_counter.labels(**issue_labels).inc()


def record_fast_path(hit: bool) -> None:
    labels = {"result": "hit" if hit else "miss"}
    if _enabled and _fast_path_counter is not None:
        _fast_path_counter.add(1, labels)
    if _prom_enabled and _prom_fast_path_counter is not None:
        _prom_fast_path_counter.labels(**labels).inc()


def record_query(source: str, duration_ms: float) -> None:
    labels = _labels(source=source)
    if _enabled and _query_counter is not None:
        _query_counter.add(1, labels)
    if _enabled and _query_latency_hist is not None:
        _query_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_query_counter is not None:
        _prom_query_counter.labels(**labels).inc()
    if _prom_enabled and _prom_query_latency_hist is not None:
        _prom_query_latency_hist.labels(**labels).observe(max(0.0, float(duration_ms)))
