"""Observability integration for the authentication engine."""

from __future__ import annotations

import json
import logging
import time
from contextlib import ExitStack
from typing import TYPE_CHECKING, Any, Iterable, Mapping
from urllib.parse import urlparse

import msgspec

from .exceptions import AuthFlowError

if TYPE_CHECKING:
    from .models import FlowSet, ServerParams, Session


class OperationObservabilityConfig(msgspec.Struct, frozen=True):
    """Span and metric names for one engine operation."""

    span_name: str
    datadog_metric_success: str | None = None
    datadog_metric_error: str | None = None
    datadog_metric_timing: str | None = None


class ObservabilityConfig(msgspec.Struct, frozen=True):
    """Top-level observability configuration."""

    enabled: bool = True
    log_events: bool = True
    opentelemetry_enabled: bool = True
    opentelemetry_tracer: str = "authflow"
    sentry_enabled: bool = True
    sentry_record_breadcrumbs: bool = True
    sentry_capture_exceptions: bool = True
    sentry_breadcrumb_category: str = "authflow"
    sentry_breadcrumb_level: str = "info"
    datadog_enabled: bool = True
    datadog_tags: tuple[tuple[str, str], ...] = ()
    discovery: OperationObservabilityConfig = OperationObservabilityConfig(
        span_name="authflow.discovery",
        datadog_metric_success="authflow.discovery.success",
        datadog_metric_error="authflow.discovery.errors",
        datadog_metric_timing="authflow.discovery.duration",
    )
    submission: OperationObservabilityConfig = OperationObservabilityConfig(
        span_name="authflow.submission",
        datadog_metric_success="authflow.submission.success",
        datadog_metric_error="authflow.submission.errors",
        datadog_metric_timing="authflow.submission.duration",
    )


class _ObservationContext:
    __slots__ = (
        "datadog_tags",
        "log_fields",
        "metric_error",
        "metric_success",
        "metric_timing",
        "span",
        "stack",
        "start",
    )

    def __init__(
        self,
        *,
        start: float,
        stack: ExitStack,
        span: Any | None,
        datadog_tags: tuple[str, ...],
        operation: OperationObservabilityConfig,
        log_fields: Mapping[str, Any],
    ) -> None:
        self.start = start
        self.stack = stack
        self.span = span
        self.datadog_tags = datadog_tags
        self.metric_success = operation.datadog_metric_success
        self.metric_error = operation.datadog_metric_error
        self.metric_timing = operation.datadog_metric_timing
        self.log_fields = dict(log_fields)

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start) * 1000.0

    def close(self, error: BaseException | None = None) -> None:
        if error is None:
            self.stack.__exit__(None, None, None)
        else:
            self.stack.__exit__(type(error), error, error.__traceback__)


class Observability:
    """Coordinate tracing, error tracking, metrics, and logging providers."""

    def __init__(self, config: ObservabilityConfig | None = None) -> None:
        self.config = config or ObservabilityConfig()
        self._tracer = None
        self._client_span_kind = None
        self._status_cls = None
        self._status_ok = None
        self._status_error = None
        self._sentry_hub = None
        self._statsd = None
        self._logger = logging.getLogger("authflow.observability")
        self._base_datadog_tags = tuple(f"{key}:{value}" for key, value in self.config.datadog_tags)
        if self.config.enabled:
            self._prepare_opentelemetry()
            self._prepare_sentry()
            self._prepare_datadog()
        self._enabled = self.config.enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _prepare_opentelemetry(self) -> None:
        if not self.config.opentelemetry_enabled:
            return
        try:
            from opentelemetry import trace  # type: ignore[import-not-found]
        except ImportError:  # pragma: no cover - optional dependency
            return
        self._tracer = trace.get_tracer(self.config.opentelemetry_tracer)
        span_kind = getattr(trace, "SpanKind", None)
        self._client_span_kind = getattr(span_kind, "CLIENT", None) if span_kind else None
        status_cls = getattr(trace, "Status", None)
        status_code_cls = getattr(trace, "StatusCode", None)
        if status_cls is not None and status_code_cls is not None:
            self._status_cls = status_cls
            self._status_ok = getattr(status_code_cls, "OK", None)
            self._status_error = getattr(status_code_cls, "ERROR", None)

    def _prepare_sentry(self) -> None:
        if not self.config.sentry_enabled:
            return
        try:
            import sentry_sdk  # type: ignore[import-not-found]
        except ImportError:  # pragma: no cover - optional dependency
            return
        self._sentry_hub = sentry_sdk.Hub.current

    def _prepare_datadog(self) -> None:
        if not self.config.datadog_enabled:
            return
        try:
            from datadog import statsd  # type: ignore[import-not-found]
        except ImportError:  # pragma: no cover - optional dependency
            return
        self._statsd = statsd

    def _status(self, code: Any, description: str | None = None) -> Any | None:
        if self._status_cls is None or code is None:
            return None
        if description is None:
            return self._status_cls(code)
        return self._status_cls(code, description=description)

    @staticmethod
    def _server_host(server: "ServerParams") -> str:
        try:
            parsed = urlparse(server.base_url)
        except ValueError:  # pragma: no cover - defensive parsing guard
            return server.base_url
        return parsed.hostname or parsed.netloc or server.base_url

    def _log(self, context: _ObservationContext | None, event: str, extra: Mapping[str, Any] | None = None) -> None:
        if not self.config.enabled or not self.config.log_events:
            return
        payload: dict[str, Any] = {}
        if context is not None:
            payload.update(context.log_fields)
        if extra:
            for key, value in extra.items():
                if value is not None:
                    payload[key] = value
        payload["event"] = event
        self._logger.info(json.dumps(payload, separators=(",", ":"), default=str))

    def _start(
        self,
        operation: OperationObservabilityConfig,
        *,
        attributes: Mapping[str, Any],
        datadog_tags: Iterable[str],
        breadcrumb_message: str,
    ) -> _ObservationContext | None:
        if not self._enabled:
            return None
        stack = ExitStack()
        span = None
        if self._tracer is not None:
            span = stack.enter_context(
                self._tracer.start_as_current_span(operation.span_name, kind=self._client_span_kind)
            )
            for key, value in attributes.items():
                span.set_attribute(key, value)
        if self._sentry_hub is not None and self.config.sentry_record_breadcrumbs:
            self._sentry_hub.add_breadcrumb(
                category=self.config.sentry_breadcrumb_category,
                level=self.config.sentry_breadcrumb_level,
                message=breadcrumb_message,
                data=dict(attributes),
            )
        return _ObservationContext(
            start=time.perf_counter(),
            stack=stack,
            span=span,
            datadog_tags=self._base_datadog_tags + tuple(datadog_tags),
            operation=operation,
            log_fields=attributes,
        )

    def _succeed(self, context: _ObservationContext, attributes: Mapping[str, Any]) -> None:
        if self._statsd is not None:
            tags = list(context.datadog_tags)
            if context.metric_success:
                self._statsd.increment(context.metric_success, tags=tags)
            if context.metric_timing:
                self._statsd.timing(context.metric_timing, context.elapsed_ms(), tags=tags)
        if context.span is not None:
            for key, value in attributes.items():
                context.span.set_attribute(key, value)
            status = self._status(self._status_ok)
            if status is not None:
                context.span.set_status(status)
        context.close()

    def _fail(self, context: _ObservationContext | None, error: BaseException, attributes: Mapping[str, Any]) -> None:
        # Engine errors are expected outcomes; only unexpected failures go to Sentry.
        expected = isinstance(error, AuthFlowError)
        if context is None:
            if not expected:
                self._capture_exception(error)
            return
        if self._statsd is not None:
            tags = list(context.datadog_tags)
            tags.append(f"error:{type(error).__name__}")
            if context.metric_error:
                self._statsd.increment(context.metric_error, tags=tags)
            if context.metric_timing:
                self._statsd.timing(context.metric_timing, context.elapsed_ms(), tags=tags)
        if context.span is not None:
            for key, value in attributes.items():
                context.span.set_attribute(key, value)
            if hasattr(context.span, "record_exception"):
                context.span.record_exception(error)
            status = self._status(self._status_error, description=str(error))
            if status is not None:
                context.span.set_status(status)
        if not expected:
            self._capture_exception(error)
        context.close(error)

    def _capture_exception(self, error: BaseException) -> None:
        if self._sentry_hub is not None and self.config.sentry_capture_exceptions:
            self._sentry_hub.capture_exception(error)

    def on_discovery_start(self, server: "ServerParams", generation: int) -> _ObservationContext | None:
        host = self._server_host(server)
        attributes = {"authflow.server": host, "authflow.generation": generation}
        context = self._start(
            self.config.discovery,
            attributes=attributes,
            datadog_tags=(f"server:{host}",),
            breadcrumb_message=f"discover flows on {host}",
        )
        self._log(context, "discovery.start", attributes if context is None else None)
        return context

    def on_discovery_success(self, context: _ObservationContext | None, flow_set: "FlowSet") -> None:
        extra = {"authflow.flows": len(flow_set.flows)}
        self._log(context, "discovery.success", extra)
        if context is not None:
            self._succeed(context, {**extra, "authflow.result": "success"})

    def on_discovery_error(self, context: _ObservationContext | None, error: BaseException) -> None:
        extra = {"authflow.error": type(error).__name__, "authflow.cause": str(getattr(error, "cause", "")) or None}
        self._log(context, "discovery.error", extra)
        self._fail(context, error, {"authflow.result": "error"})

    def on_discovery_discarded(self, generation: int, latest: int) -> None:
        self._log(None, "discovery.discarded", {"authflow.generation": generation, "authflow.latest": latest})

    def on_submission_start(self, session: "Session", stage_type: str) -> _ObservationContext | None:
        attributes: dict[str, Any] = {
            "authflow.attempt": session.attempt_id,
            "authflow.stage": stage_type,
            "authflow.stage_index": session.stage_index,
        }
        tags = [f"stage:{stage_type}"]
        if session.server is not None:
            host = self._server_host(session.server)
            attributes["authflow.server"] = host
            tags.append(f"server:{host}")
        context = self._start(
            self.config.submission,
            attributes=attributes,
            datadog_tags=tags,
            breadcrumb_message=f"submit stage {stage_type}",
        )
        self._log(context, "submission.start", attributes if context is None else None)
        return context

    def on_submission_success(self, context: _ObservationContext | None, session: "Session") -> None:
        extra = {"authflow.status": session.status.value}
        self._log(context, "submission.success", extra)
        if context is not None:
            self._succeed(context, {**extra, "authflow.result": "success"})

    def on_submission_error(self, context: _ObservationContext | None, error: BaseException) -> None:
        self._log(context, "submission.error", {"authflow.error": type(error).__name__})
        self._fail(context, error, {"authflow.result": "error"})


__all__ = [
    "Observability",
    "ObservabilityConfig",
    "OperationObservabilityConfig",
]
