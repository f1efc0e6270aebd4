"""Error types shared by the engine, the dispatcher and the HTTP layer."""

from __future__ import annotations

from typing import Any


class NoFitError(Exception):
    """A cut piece doesn't fit in any of the stock pieces.

    The piece is the only exception argument so the error survives pickling
    across a process pool.
    """

    def __init__(self, cut_piece: Any) -> None:
        super().__init__(cut_piece)
        self.cut_piece = cut_piece

    def __str__(self) -> str:
        return f"The following cut piece doesn't fit any stock pieces: {self.cut_piece!r}"


class ChannelClosed(Exception):
    """The worker side went away before sending a result."""


class AdmissionError(Exception):
    """Request rejected by an admission policy."""

    status_code = 500
    message = "Request rejected"

    def __str__(self) -> str:
        return self.message


class RequestTimeout(AdmissionError):
    status_code = 408
    message = "Request took too long"


class Overloaded(AdmissionError):
    status_code = 503
    message = "Too many requests"


class OptimizeError(Exception):
    """Error rendered as the `{"error": {"message", "data"}}` envelope."""

    def __init__(self, status_code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.data = data

    def envelope(self) -> dict[str, Any]:
        return {"error": {"message": self.message, "data": self.data}}
