from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

DEFAULT_RANDOM_SEED = 1


class OptimizeMethod(str, Enum):
    GUILLOTINE = "guillotine"
    NESTED = "nested"


class PatternDirection(str, Enum):
    """Direction of the material pattern (wood grain, brushed finish...)."""

    NONE = "none"
    PARALLEL_TO_WIDTH = "parallelToWidth"
    PARALLEL_TO_LENGTH = "parallelToLength"

    def rotated(self) -> PatternDirection:
        if self is PatternDirection.PARALLEL_TO_WIDTH:
            return PatternDirection.PARALLEL_TO_LENGTH
        if self is PatternDirection.PARALLEL_TO_LENGTH:
            return PatternDirection.PARALLEL_TO_WIDTH
        return self


def _field(payload: dict[str, Any], key: str) -> Any:
    if key not in payload:
        raise ValueError(f"missing field `{key}`")
    return payload[key]


def _integer(value: Any, key: str, minimum: int) -> int:
    # bool is an int subclass; `true` is not a dimension.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"`{key}` must be an integer, got {value!r}")
    if value < minimum:
        raise ValueError(f"`{key}` must be >= {minimum}, got {value}")
    return value


def _boolean(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"`{key}` must be a boolean, got {value!r}")
    return value


def _enum(enum_cls: type[Enum], value: Any, key: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(repr(m.value) for m in enum_cls)
        raise ValueError(f"`{key}` must be one of {allowed}, got {value!r}") from None


def _object(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be a JSON object")
    return value


def _array(value: Any, key: str) -> list[Any]:
    if not isinstance(value, list):
        raise ValueError(f"`{key}` must be a JSON array")
    return value


@dataclass(frozen=True)
class StockPiece:
    """Raw sheet stock available for cutting. `quantity=None` means unlimited."""

    width: int
    length: int
    pattern_direction: PatternDirection = PatternDirection.NONE
    price: int = 0
    quantity: int | None = None

    @classmethod
    def from_json(cls, payload: Any) -> StockPiece:
        payload = _object(payload, "stock piece")
        quantity = payload.get("quantity")
        return cls(
            width=_integer(_field(payload, "width"), "width", 1),
            length=_integer(_field(payload, "length"), "length", 1),
            pattern_direction=_enum(
                PatternDirection, payload.get("patternDirection", "none"), "patternDirection"
            ),
            price=_integer(payload.get("price", 0), "price", 0),
            quantity=None if quantity is None else _integer(quantity, "quantity", 1),
        )

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "width": self.width,
            "length": self.length,
            "patternDirection": self.pattern_direction.value,
            "price": self.price,
        }
        if self.quantity is not None:
            out["quantity"] = self.quantity
        return out


@dataclass(frozen=True)
class CutPiece:
    """A demanded cut. `external_id` is the caller's key and is never generated here."""

    external_id: Any
    width: int
    length: int
    pattern_direction: PatternDirection = PatternDirection.NONE
    can_rotate: bool = True

    @classmethod
    def from_json(cls, payload: Any) -> CutPiece:
        payload = _object(payload, "cut piece")
        return cls(
            external_id=payload.get("externalId"),
            width=_integer(_field(payload, "width"), "width", 1),
            length=_integer(_field(payload, "length"), "length", 1),
            pattern_direction=_enum(
                PatternDirection, payload.get("patternDirection", "none"), "patternDirection"
            ),
            can_rotate=_boolean(payload.get("canRotate", True), "canRotate"),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "externalId": self.external_id,
            "width": self.width,
            "length": self.length,
            "patternDirection": self.pattern_direction.value,
            "canRotate": self.can_rotate,
        }


@dataclass(frozen=True)
class OptimizationRequest:
    """Everything the engine needs for one optimization run."""

    cut_width: int
    stock_pieces: tuple[StockPiece, ...]
    cut_pieces: tuple[CutPiece, ...]
    method: OptimizeMethod = OptimizeMethod.GUILLOTINE
    random_seed: int = DEFAULT_RANDOM_SEED
    allow_mixed_stock_sizes: bool = True

    @classmethod
    def from_json(cls, payload: Any) -> OptimizationRequest:
        """Decode the wire JSON, filling defaults for the optional fields.

        Raises:
            ValueError: if a required field is missing or a value has the wrong
                type or range.
        """
        payload = _object(payload, "request body")
        seed = payload.get("randomSeed")
        mixed = payload.get("allowMixedStockSizes")
        return cls(
            method=_enum(OptimizeMethod, payload.get("method", "guillotine"), "method"),
            random_seed=DEFAULT_RANDOM_SEED if seed is None else _integer(seed, "randomSeed", 0),
            cut_width=_integer(_field(payload, "cutWidth"), "cutWidth", 0),
            stock_pieces=tuple(
                StockPiece.from_json(p) for p in _array(_field(payload, "stockPieces"), "stockPieces")
            ),
            cut_pieces=tuple(
                CutPiece.from_json(p) for p in _array(_field(payload, "cutPieces"), "cutPieces")
            ),
            allow_mixed_stock_sizes=True if mixed is None else _boolean(mixed, "allowMixedStockSizes"),
        )


@dataclass(frozen=True)
class ResultCutPiece:
    external_id: Any
    x: int
    y: int
    width: int
    length: int
    pattern_direction: PatternDirection
    is_rotated: bool

    def to_json(self) -> dict[str, Any]:
        return {
            "externalId": self.external_id,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "length": self.length,
            "patternDirection": self.pattern_direction.value,
            "isRotated": self.is_rotated,
        }


@dataclass(frozen=True)
class ResultStockPiece:
    width: int
    length: int
    pattern_direction: PatternDirection
    price: int
    cut_pieces: tuple[ResultCutPiece, ...]

    def to_json(self) -> dict[str, Any]:
        return {
            "width": self.width,
            "length": self.length,
            "patternDirection": self.pattern_direction.value,
            "price": self.price,
            "cutPieces": [p.to_json() for p in self.cut_pieces],
        }


@dataclass(frozen=True)
class Solution:
    """Engine output. `fitness` is placed area over used stock area."""

    fitness: float
    price: int
    stock_pieces: tuple[ResultStockPiece, ...]

    def to_json(self) -> dict[str, Any]:
        return {
            "fitness": self.fitness,
            "price": self.price,
            "stockPieces": [s.to_json() for s in self.stock_pieces],
        }
