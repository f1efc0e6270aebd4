import asyncio
import logging
import threading
import time

from werkzeug.exceptions import BadRequest

from cut_optimizer_server.api.admission import (
    TEXT,
    AdmissionStack,
    ConcurrencyLimit,
    LoadShed,
    NormalizeErrors,
    Timeout,
    build_admission_stack,
)
from cut_optimizer_server.core.engine import optimize
from cut_optimizer_server.errors import OptimizeError


def test_layers_are_composed_in_documented_order():
    async def handler(request):
        return request

    stack = build_admission_stack(handler, timeout=60, max_requests=100)

    assert [type(layer) for layer in stack.layers] == [
        NormalizeErrors,
        Timeout,
        LoadShed,
        ConcurrencyLimit,
    ]


def test_timeout_is_normalized_to_request_timeout():
    async def slow_handler(request):
        await asyncio.sleep(5)

    stack = build_admission_stack(slow_handler, timeout=0.05, max_requests=1)

    assert asyncio.run(stack("req")) == ("Request took too long", 408, TEXT)
    assert stack.layer(ConcurrencyLimit).in_flight == 0


def test_zero_timeout_disables_the_deadline():
    async def handler(request):
        await asyncio.sleep(0.05)
        return "done"

    stack = build_admission_stack(handler, timeout=0, max_requests=1)

    assert asyncio.run(stack("req")) == "done"


def test_excess_request_is_shed_not_queued():
    gate = None

    async def handler(request):
        await gate.wait()
        return request

    stack = build_admission_stack(handler, timeout=60, max_requests=1)

    async def scenario():
        nonlocal gate
        gate = asyncio.Event()
        first = asyncio.ensure_future(stack("first"))
        await asyncio.sleep(0.01)
        second = await stack("second")
        gate.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert first == "first"
    assert second == ("Too many requests", 503, TEXT)
    assert stack.layer(ConcurrencyLimit).in_flight == 0


def test_concurrency_limit_alone_queues_instead_of_rejecting():
    active = 0
    peak = 0

    async def handler(request):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.02)
        active -= 1
        return request

    limiter = ConcurrencyLimit(1, retry_interval=0.001)
    stack = AdmissionStack([limiter], handler)

    async def scenario():
        return await asyncio.gather(*(stack(i) for i in range(3)))

    assert asyncio.run(scenario()) == [0, 1, 2]
    assert peak == 1
    assert limiter.in_flight == 0


def test_slot_is_released_when_handler_fails(caplog):
    async def failing_handler(request):
        raise ValueError("kaput")

    stack = build_admission_stack(failing_handler, timeout=60, max_requests=1)

    body, status, _ = asyncio.run(stack("req"))

    assert status == 500
    assert body == "Unhandled internal error: kaput"
    assert stack.layer(ConcurrencyLimit).in_flight == 0
    assert "Unhandled error while serving request" in caplog.text


def test_http_and_envelope_errors_are_normalized():
    async def bad_request(request):
        raise BadRequest("missing field `cutWidth`")

    async def no_fit(request):
        raise OptimizeError(422, "Cut piece doesn't fit in any stock pieces", {"externalId": 7})

    assert asyncio.run(AdmissionStack([NormalizeErrors()], bad_request)("req")) == (
        "missing field `cutWidth`",
        400,
        TEXT,
    )
    assert asyncio.run(AdmissionStack([NormalizeErrors()], no_fit)("req")) == (
        {"error": {"message": "Cut piece doesn't fit in any stock pieces", "data": {"externalId": 7}}},
        422,
    )


def test_requests_over_the_cap_get_service_unavailable(make_app, test_input):
    started = threading.Event()
    release = threading.Event()

    def slow_engine(request):
        started.set()
        release.wait(5)
        return optimize(request)

    app = make_app(OPTIMIZER_ENGINE=slow_engine, MAX_REQUESTS=1)
    results = {}

    def first_request():
        results["first"] = app.test_client().post("/optimize", json=test_input)

    worker = threading.Thread(target=first_request)
    worker.start()
    try:
        assert started.wait(5)
        second = app.test_client().post("/optimize", json=test_input)
    finally:
        release.set()
        worker.join(5)

    assert second.status_code == 503
    assert results["first"].status_code == 200
    assert app.extensions["admission_stack"].layer(ConcurrencyLimit).in_flight == 0


def test_deadline_exceeded_returns_request_timeout(make_app, test_input, caplog):
    release = threading.Event()
    finished = threading.Event()

    def stuck_engine(request):
        release.wait(5)
        finished.set()
        return optimize(request)

    client = make_app(OPTIMIZER_ENGINE=stuck_engine, REQUEST_TIMEOUT_S=0.2).test_client()

    resp = client.post("/optimize", json=test_input)
    release.set()

    assert resp.status_code == 408
    assert resp.data == b"Request took too long"
    assert finished.wait(5)

    # Scenario: the engine finishes after the client got its 408; the result is
    # dropped with a warning instead of being delivered anywhere.
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        if "Receiver side of channel closed" in caplog.text:
            break
        time.sleep(0.01)
    assert "Receiver side of channel closed" in caplog.text
    assert any(r.levelno == logging.WARNING for r in caplog.records)
