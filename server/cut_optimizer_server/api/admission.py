"""Admission control around the optimize handler.

The stack is a chain of layers, each with `async handle(request, call_next)`.
`call_next` runs the rest of the chain and also exposes `poll_ready()`, a
non-blocking capacity probe on the next layer. The order is fixed:

    NormalizeErrors > Timeout > LoadShed > ConcurrencyLimit > handler

so timeouts and shed requests both come out of the same error mapping.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Sequence

from werkzeug.exceptions import HTTPException

from ..errors import AdmissionError, OptimizeError, Overloaded, RequestTimeout

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]

TEXT = {"Content-Type": "text/plain; charset=utf-8"}


class Layer:
    def poll_ready(self) -> bool:
        return True

    async def handle(self, request: Any, call_next: Next) -> Any:
        return await call_next(request)


class Next:
    """The remainder of a stack, from one layer inwards."""

    def __init__(self, layers: Sequence[Layer], handler: Handler) -> None:
        self._layers = layers
        self._handler = handler

    def poll_ready(self) -> bool:
        return self._layers[0].poll_ready() if self._layers else True

    async def __call__(self, request: Any) -> Any:
        if not self._layers:
            return await self._handler(request)
        head, rest = self._layers[0], self._layers[1:]
        return await head.handle(request, Next(rest, self._handler))


class NormalizeErrors(Layer):
    """Turn anything raised further in into a Flask response tuple."""

    async def handle(self, request: Any, call_next: Next) -> Any:
        try:
            return await call_next(request)
        except AdmissionError as err:
            return err.message, err.status_code, TEXT
        except OptimizeError as err:
            return err.envelope(), err.status_code
        except HTTPException as err:
            return err.description, err.code, TEXT
        except Exception as err:
            logger.exception("Unhandled error while serving request")
            return f"Unhandled internal error: {err}", 500, TEXT


class Timeout(Layer):
    """Fail with `RequestTimeout` once `seconds` have passed. Falsy disables."""

    def __init__(self, seconds: float | None) -> None:
        self.seconds = seconds

    async def handle(self, request: Any, call_next: Next) -> Any:
        if not self.seconds:
            return await call_next(request)
        try:
            return await asyncio.wait_for(call_next(request), self.seconds)
        except asyncio.TimeoutError:
            raise RequestTimeout() from None


class LoadShed(Layer):
    """Reject immediately when the next layer has no capacity left."""

    async def handle(self, request: Any, call_next: Next) -> Any:
        if not call_next.poll_ready():
            raise Overloaded()
        return await call_next(request)


class ConcurrencyLimit(Layer):
    """At most `max_requests` requests inside this layer at once.

    `poll_ready()` reserves a slot for the current request's context. `handle`
    uses that reservation, or waits for a slot when called without one.
    """

    def __init__(self, max_requests: int, retry_interval: float = 0.01) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.retry_interval = retry_interval
        self._in_flight = 0
        self._lock = threading.Lock()
        self._reserved: ContextVar[bool] = ContextVar(f"concurrency-slot-{id(self)}", default=False)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def poll_ready(self) -> bool:
        if self._reserved.get():
            return True
        with self._lock:
            if self._in_flight >= self.max_requests:
                return False
            self._in_flight += 1
        self._reserved.set(True)
        return True

    async def handle(self, request: Any, call_next: Next) -> Any:
        while not self.poll_ready():
            await asyncio.sleep(self.retry_interval)
        try:
            return await call_next(request)
        finally:
            self._reserved.set(False)
            with self._lock:
                self._in_flight -= 1


class AdmissionStack:
    def __init__(self, layers: Sequence[Layer], handler: Handler) -> None:
        self.layers = list(layers)
        self.handler = handler

    async def __call__(self, request: Any) -> Any:
        return await Next(self.layers, self.handler)(request)

    def layer(self, kind: type[Layer]) -> Layer:
        return next(layer for layer in self.layers if isinstance(layer, kind))


def build_admission_stack(
    handler: Handler, timeout: float | None, max_requests: int
) -> AdmissionStack:
    return AdmissionStack(
        [NormalizeErrors(), Timeout(timeout), LoadShed(), ConcurrencyLimit(max_requests)],
        handler,
    )
