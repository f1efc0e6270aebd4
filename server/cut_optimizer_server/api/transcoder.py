from __future__ import annotations

from typing import Any

from flask import Request, jsonify
from werkzeug.exceptions import BadRequest, RequestEntityTooLarge

from ..core.models import OptimizationRequest, Solution
from ..errors import ChannelClosed, NoFitError, OptimizeError


def decode_request(req: Request) -> OptimizationRequest:
    """Read and validate the optimize request body.

    The size limit is checked before anything is parsed.

    Raises:
        RequestEntityTooLarge: body over `MAX_CONTENT_LENGTH`.
        BadRequest: malformed JSON or an invalid/incomplete request.
    """
    limit = req.max_content_length
    if limit is not None and req.content_length is not None and req.content_length > limit:
        raise RequestEntityTooLarge()

    try:
        payload = req.get_json(force=True)
    except RecursionError as exc:
        raise BadRequest("Failed to decode JSON object: nested too deeply") from exc
    try:
        return OptimizationRequest.from_json(payload)
    except ValueError as exc:
        raise BadRequest(f"Invalid optimization request: {exc}") from exc


def encode_solution(solution: Solution) -> Any:
    return jsonify(solution.to_json())


def no_fit_error(exc: NoFitError) -> OptimizeError:
    return OptimizeError(422, "Cut piece doesn't fit in any stock pieces", exc.cut_piece.to_json())


def channel_error(exc: ChannelClosed) -> OptimizeError:
    return OptimizeError(500, "Couldn't receive result from channel", str(exc))
