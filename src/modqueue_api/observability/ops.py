from __future__ import annotations

import time
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.trace.status import Status, StatusCode

from modqueue_api.domain.errors import AppError
from modqueue_api.observability import metrics

_tracer = trace.get_tracer("modqueue_api")


def _set_attributes(span: trace.Span, attributes: dict[str, Any] | None) -> None:
    if not attributes:
        return
    for key, value in attributes.items():
        if value is None:
            continue
        span.set_attribute(key, value if isinstance(value, (str, bool, int, float)) else str(value))


@asynccontextmanager
async def observe_operation(
    operation: str,
    *,
    attributes: dict[str, Any] | None = None,
) -> AsyncIterator[trace.Span]:
    start = time.perf_counter()
    outcome = "success"
    error_code = ""
    with _tracer.start_as_current_span(f"mq.{operation}") as span:
        _set_attributes(span, attributes)
        try:
            yield span
        except AppError as exc:
            outcome = "error"
            error_code = exc.code
            span.set_attribute("app.error_code", exc.code)
            span.set_status(Status(StatusCode.ERROR, description=exc.code))
            raise
        except Exception as exc:  # noqa: BLE001
            outcome = "error"
            error_code = "unhandled_exception"
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR))
            raise
        finally:
            duration = time.perf_counter() - start
            metrics.operation_total.labels(
                operation=operation, outcome=outcome, error_code=error_code
            ).inc()
            metrics.operation_duration_seconds.labels(operation=operation, outcome=outcome).observe(
                duration
            )


@contextmanager
def observe_transition(
    *,
    action_type: str,
    from_state: str,
    to_state: str,
    attributes: dict[str, Any] | None = None,
) -> Iterator[None]:
    outcome = "success"
    with _tracer.start_as_current_span("mq.action_transition") as span:
        span.set_attribute("action.type", action_type)
        span.set_attribute("action.from_state", from_state)
        span.set_attribute("action.to_state", to_state)
        _set_attributes(span, attributes)
        try:
            yield
        except Exception as exc:  # noqa: BLE001
            outcome = "error"
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR))
            raise
        finally:
            metrics.action_transition_total.labels(
                action_type=action_type,
                from_state=from_state,
                to_state=to_state,
                outcome=outcome,
            ).inc()
