"""Span decorator for service entry points."""

import functools
import inspect
from collections.abc import Callable
from typing import Any, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

F = TypeVar("F", bound=Callable[..., Any])

tracer = trace.get_tracer("menu_sync_service")


def _mark_failed(span: Span, error: Exception) -> None:
    span.set_attribute("success", False)
    span.set_attribute("error.type", type(error).__name__)
    code = getattr(error, "code", None)
    if isinstance(code, str):
        span.set_attribute("error.code", code)
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.record_exception(error)


def traced(span_name: str | None = None, **attributes: str) -> Callable[[F], F]:
    """Run the decorated function (sync or async) inside a new span.

    Exceptions are recorded on the span, with the pipeline error code when
    the exception carries one, and re-raised.

    Example:
        @traced("dlq_replay")
        async def replay(self, message_id: str) -> ReplayResult:
            ...
    """

    def decorator(func: F) -> F:
        name = span_name or func.__qualname__

        def start() -> Any:
            return tracer.start_as_current_span(
                name,
                attributes={"code.function": func.__qualname__, **attributes},
                record_exception=False,
                set_status_on_exception=False,
            )

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with start() as span:
                    try:
                        result = await func(*args, **kwargs)
                    except Exception as e:
                        _mark_failed(span, e)
                        raise
                    span.set_attribute("success", True)
                    return result

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with start() as span:
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _mark_failed(span, e)
                    raise
                span.set_attribute("success", True)
                return result

        return sync_wrapper  # type: ignore[return-value]

    return decorator
