"""OpenTelemetry spans, metrics, and narrative logs.

Telemetry is observability scaffolding only. Every helper here swallows its
own failures so that a broken collector or exporter never stops a journal
entry from being written. Application exceptions raised inside ``span()``
are recorded and re-raised unchanged.

Exporters are installed only when ``dev`` is enabled; otherwise the
OpenTelemetry API's no-op providers are used.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Generator, Optional

from opentelemetry import metrics, trace
from opentelemetry.trace import Status, StatusCode

from . import __version__

if TYPE_CHECKING:
    from .config import CommitStoryConfig

NAMESPACE = "commit_story"
LOGGER_NAME = "commit_story"

# Bounds on exporter calls so a down collector cannot hold up a commit
EXPORT_TIMEOUT_SECONDS = 5
FLUSH_TIMEOUT_MILLIS = 3000

logger = logging.getLogger(__name__)

# Providers installed by setup_telemetry, flushed by shutdown_telemetry
_providers: list[Any] = []
_instruments: dict[tuple[str, str], Any] = {}
_console_handler: Optional[logging.Handler] = None
_otel_log_handler: Optional[logging.Handler] = None


# ========== Setup ==========

def setup_telemetry(config: "CommitStoryConfig") -> bool:
    """Install OTLP exporters for traces, metrics and logs when dev is on.

    Returns:
        True if exporters were installed.
    """
    global _otel_log_handler

    if not config.dev or _providers:
        return bool(_providers)

    try:
        from opentelemetry._logs import set_logger_provider
        from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
        from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        endpoint = config.otlp_endpoint.rstrip("/")
        resource = Resource.create({
            "service.name": config.service_name,
            "service.version": __version__,
            "deployment.environment": "development",
        })

        tracer_provider = TracerProvider(resource=resource)
        tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces", timeout=EXPORT_TIMEOUT_SECONDS))
        )
        trace.set_tracer_provider(tracer_provider)

        reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=f"{endpoint}/v1/metrics", timeout=EXPORT_TIMEOUT_SECONDS),
            export_interval_millis=5000,
            export_timeout_millis=EXPORT_TIMEOUT_SECONDS * 1000,
        )
        meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
        metrics.set_meter_provider(meter_provider)

        logger_provider = LoggerProvider(resource=resource)
        logger_provider.add_log_record_processor(
            BatchLogRecordProcessor(OTLPLogExporter(endpoint=f"{endpoint}/v1/logs", timeout=EXPORT_TIMEOUT_SECONDS))
        )
        set_logger_provider(logger_provider)

        _otel_log_handler = LoggingHandler(level=logging.INFO, logger_provider=logger_provider)
        logging.getLogger(LOGGER_NAME).addHandler(_otel_log_handler)

        _providers.extend([tracer_provider, meter_provider, logger_provider])
        logger.debug("Telemetry exporting to %s", endpoint)
        return True

    except Exception as e:
        logger.warning("Telemetry setup failed, continuing without export: %s", e)
        return False


def shutdown_telemetry() -> None:
    """Flush and shut down installed providers."""
    global _otel_log_handler

    if _otel_log_handler is not None:
        logging.getLogger(LOGGER_NAME).removeHandler(_otel_log_handler)
        _otel_log_handler = None

    while _providers:
        provider = _providers.pop()
        try:
            if hasattr(provider, "force_flush"):
                provider.force_flush(timeout_millis=FLUSH_TIMEOUT_MILLIS)
            provider.shutdown()
        except Exception as e:
            logger.debug("Telemetry shutdown error ignored: %s", e)


def configure_logging(config: "CommitStoryConfig") -> None:
    """Route narrative logs to the console only in debug mode."""
    global _console_handler

    app_logger = logging.getLogger(LOGGER_NAME)
    if _console_handler is not None:
        app_logger.removeHandler(_console_handler)
        _console_handler = None

    if config.debug:
        _console_handler = logging.StreamHandler(sys.stderr)
        _console_handler.setFormatter(logging.Formatter("%(message)s"))
        app_logger.addHandler(_console_handler)
        app_logger.setLevel(logging.DEBUG)
    else:
        if not any(isinstance(h, logging.NullHandler) for h in app_logger.handlers):
            app_logger.addHandler(logging.NullHandler())
        app_logger.setLevel(logging.INFO)


# ========== Spans ==========

def _clean_attributes(attributes: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Drop None values and coerce unsupported types to strings."""
    cleaned = {}
    for key, value in (attributes or {}).items():
        if value is None:
            continue
        if isinstance(value, Path):
            value = str(value)
        elif not isinstance(value, (str, bool, int, float, list, tuple)):
            value = str(value)
        cleaned[key] = value
    return cleaned


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(NAMESPACE, __version__)


@contextmanager
def span(name: str, attributes: Optional[dict[str, Any]] = None) -> Generator[trace.Span, None, None]:
    """Run a block inside an active span.

    Exceptions from the block are recorded on the span and re-raised.
    """
    with get_tracer().start_as_current_span(
        name, record_exception=False, set_status_on_exception=False
    ) as current:
        set_attributes(current, attributes)
        try:
            yield current
        except BaseException as e:
            try:
                current.record_exception(e)
                current.set_status(Status(StatusCode.ERROR, str(e)))
            except Exception:
                pass
            raise
        else:
            try:
                current.set_status(Status(StatusCode.OK))
            except Exception:
                pass


def set_attributes(current: trace.Span, attributes: Optional[dict[str, Any]]) -> None:
    """Set attributes on a span, ignoring telemetry failures."""
    try:
        current.set_attributes(_clean_attributes(attributes))
    except Exception as e:
        logger.debug("Span attribute error ignored: %s", e)


def add_event(current: trace.Span, name: str, attributes: Optional[dict[str, Any]] = None) -> None:
    try:
        current.add_event(name, _clean_attributes(attributes))
    except Exception as e:
        logger.debug("Span event error ignored: %s", e)


def current_trace_ids() -> tuple[Optional[str], Optional[str]]:
    """Hex trace and span ids of the active span, if any."""
    try:
        ctx = trace.get_current_span().get_span_context()
        if ctx.is_valid:
            return format(ctx.trace_id, "032x"), format(ctx.span_id, "016x")
    except Exception:
        pass
    return None, None


# ========== Metrics ==========

def _instrument(kind: str, name: str) -> Any:
    key = (kind, name)
    if key not in _instruments:
        meter = metrics.get_meter(NAMESPACE, __version__)
        if kind == "counter":
            _instruments[key] = meter.create_counter(name)
        elif kind == "histogram":
            _instruments[key] = meter.create_histogram(name)
        else:
            _instruments[key] = meter.create_gauge(name)
    return _instruments[key]


def counter(name: str, value: int = 1, attributes: Optional[dict[str, Any]] = None) -> None:
    try:
        _instrument("counter", name).add(value, _clean_attributes(attributes))
    except Exception as e:
        logger.debug("Metric %s dropped: %s", name, e)


def gauge(name: str, value: float, attributes: Optional[dict[str, Any]] = None) -> None:
    try:
        if isinstance(value, bool):
            value = int(value)
        _instrument("gauge", name).set(value, _clean_attributes(attributes))
    except Exception as e:
        logger.debug("Metric %s dropped: %s", name, e)


def histogram(name: str, value: float, attributes: Optional[dict[str, Any]] = None) -> None:
    try:
        _instrument("histogram", name).record(value, _clean_attributes(attributes))
    except Exception as e:
        logger.debug("Metric %s dropped: %s", name, e)


# ========== Narrative logs ==========

class NarrativeLogger:
    """Logs the story of an operation alongside its trace.

    Each record carries the operation name, phase, and the active trace and
    span ids so log lines can be joined to spans in the collector.
    """

    def __init__(self, operation: str):
        self.operation = operation
        self._logger = logging.getLogger(f"{LOGGER_NAME}.{operation}")

    def _log(self, level: int, phase: str, message: str, **context: Any) -> None:
        trace_id, span_id = current_trace_ids()
        extra = {
            "operation": self.operation,
            "phase": phase,
            "trace_id": trace_id or "no-trace",
            "span_id": span_id or "no-span",
        }
        extra.update({f"ctx_{k}": v for k, v in context.items()})
        try:
            self._logger.log(level, message, extra=extra)
        except Exception:
            pass

    def start(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, "start", message, **context)

    def progress(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, "progress", message, **context)

    def decision(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, "decision", message, **context)

    def complete(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, "complete", message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, "warning", message, **context)

    def error(self, message: str, error: Optional[BaseException] = None, **context: Any) -> None:
        if error is not None:
            context["error"] = str(error)
        self._log(logging.ERROR, "error", message, **context)


def narrative_logger(operation: str) -> NarrativeLogger:
    return NarrativeLogger(operation)
