from __future__ import annotations

import re
import time
import uuid
from collections.abc import Callable

from opentelemetry import trace
from opentelemetry.propagate import extract
from opentelemetry.trace import SpanKind
from opentelemetry.trace.status import Status, StatusCode
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from modqueue_api.observability.context import actor_id_var, request_id_var
from modqueue_api.observability.tracing import tracing_enabled

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}$")


def _header(scope: Scope, name: bytes) -> str | None:
    for key, value in scope.get("headers") or []:
        if key == name:
            return value.decode("utf-8", errors="ignore").strip() or None
    return None


def _request_id(scope: Scope) -> str | None:
    value = _header(scope, b"x-request-id")
    if value and _REQUEST_ID_RE.fullmatch(value):
        return value
    return None


def _actor_id(scope: Scope) -> str | None:
    value = _header(scope, b"x-user-id")
    if value is None:
        return None
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


class RequestContextMiddleware:
    """Tag each HTTP request with a request id and the claimed actor.

    Both land in context vars for log records; the request id is echoed back and,
    with tracing on, both are attached to the server span.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        header_name: str = "x-request-id",
        access_log: Callable[[dict[str, object]], None] | None = None,
    ) -> None:
        self._app = app
        self._header_name = header_name.lower().encode("ascii")
        self._access_log = access_log

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self._app(scope, receive, send)
            return

        request_id = _request_id(scope) or str(uuid.uuid4())
        actor_id = _actor_id(scope)
        request_token = request_id_var.set(request_id)
        actor_token = actor_id_var.set(actor_id)
        start = time.perf_counter()
        status_code: int | None = None

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = int(message["status"])
                message["headers"] = [
                    *(message.get("headers") or []),
                    (self._header_name, request_id.encode("ascii")),
                ]
            await send(message)

        try:
            if tracing_enabled():
                await _traced(self._app, scope, receive, send_wrapper, request_id, actor_id)
            else:
                await self._app(scope, receive, send_wrapper)
        finally:
            if self._access_log is not None:
                self._access_log(
                    {
                        "request_id": request_id,
                        "actor_id": actor_id,
                        "method": scope.get("method"),
                        "path": scope.get("path"),
                        "status_code": status_code,
                        "duration_ms": round((time.perf_counter() - start) * 1000.0, 3),
                    }
                )
            actor_id_var.reset(actor_token)
            request_id_var.reset(request_token)


async def _traced(
    app: ASGIApp,
    scope: Scope,
    receive: Receive,
    send: Send,
    request_id: str,
    actor_id: str | None,
) -> None:
    carrier = {
        key.decode("ascii", errors="ignore"): value.decode("utf-8", errors="ignore")
        for key, value in scope.get("headers") or []
    }
    method = scope.get("method") or "UNKNOWN"
    path = scope.get("path") or ""
    attributes: dict[str, str] = {
        "http.method": method,
        "http.target": path,
        "request.id": request_id,
    }
    if actor_id:
        attributes["enduser.id"] = actor_id

    status_code: int | None = None

    async def capture_status(message: Message) -> None:
        nonlocal status_code
        if message["type"] == "http.response.start":
            status_code = int(message["status"])
        await send(message)

    tracer = trace.get_tracer("modqueue_api")
    with tracer.start_as_current_span(
        name=f"{method} {path}",
        context=extract(carrier),
        kind=SpanKind.SERVER,
        attributes=attributes,
    ) as span:
        try:
            await app(scope, receive, capture_status)
        except Exception as exc:  # noqa: BLE001
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR))
            raise
        if status_code is not None:
            span.set_attribute("http.status_code", status_code)
            span.set_status(Status(StatusCode.ERROR if status_code >= 500 else StatusCode.OK))
