from __future__ import annotations

from typing import Any

from flask import Blueprint, Request, current_app, jsonify, request

from ..errors import ChannelClosed, NoFitError
from .transcoder import channel_error, decode_request, encode_solution, no_fit_error

api = Blueprint("api", __name__)

LIVENESS_TEXT = "Cut optimizer server is running"


async def run_optimization(req: Request) -> Any:
    """Innermost handler of the admission stack: decode, dispatch, encode."""
    optimization_request = decode_request(req)
    dispatcher = current_app.extensions["job_dispatcher"]

    try:
        solution = await dispatcher.dispatch(optimization_request)
    except NoFitError as exc:
        current_app.logger.info("%s", exc)
        raise no_fit_error(exc) from exc
    except ChannelClosed as exc:
        current_app.logger.error("Couldn't receive result from channel: %s", exc)
        raise channel_error(exc) from exc

    return encode_solution(solution)


@api.get("/")
def index() -> Any:
    """Plain-text liveness marker."""
    return LIVENESS_TEXT, 200, {"Content-Type": "text/plain; charset=utf-8"}


@api.get("/health")
def health() -> Any:
    """Health probe for container orchestration and uptime checks.

    Response (200):
        `{"status": "ok"}`
    """
    return jsonify({"status": "ok"})


@api.post("/optimize")
async def optimize() -> Any:
    """Optimize a cut layout.

    Request (JSON):
        `{method?, randomSeed?, cutWidth, stockPieces, cutPieces, allowMixedStockSizes?}`

    Response (200):
        Solution JSON: `{fitness, price, stockPieces}`.

    Failure modes:
        - 400 malformed JSON or a missing/invalid field.
        - 408 when the request exceeds `REQUEST_TIMEOUT_S`.
        - 413 when the body exceeds `MAX_CONTENT_LENGTH`.
        - 422 `{"error": {"message", "data": <cut piece>}}` when a piece fits no stock.
        - 500 `{"error": {"message", "data"}}` when the worker never reported back.
        - 503 when `MAX_REQUESTS` requests are already in flight.

    The work runs on the job dispatcher's worker pool, never on this thread.
    """
    admission = current_app.extensions["admission_stack"]
    return await admission(request._get_current_object())


@api.after_app_request
def log_access(response: Any) -> Any:
    current_app.logger.info("%s %s %s", request.method, request.path, response.status_code)
    return response
