"""Cut-optimization engine.

Thin adapter over `rectpack`: it decides piece orientation and pattern
compatibility, feeds the packer, and maps the packed bins back into a `Solution`.
Pure and synchronous; the server only ever calls it from the worker pool.
"""

from __future__ import annotations

from dataclasses import dataclass
from random import Random
from typing import Iterable, Iterator

from rectpack import PackingBin, PackingMode, SORT_AREA, newPacker
from rectpack.guillotine import GuillotineBssfSas
from rectpack.maxrects import MaxRectsBssf

from ..errors import NoFitError
from .models import (
    CutPiece,
    OptimizationRequest,
    OptimizeMethod,
    PatternDirection,
    ResultCutPiece,
    ResultStockPiece,
    Solution,
    StockPiece,
)

PACK_ALGORITHMS = {
    OptimizeMethod.GUILLOTINE: GuillotineBssfSas,
    OptimizeMethod.NESTED: MaxRectsBssf,
}


@dataclass(frozen=True)
class _Placement:
    """A cut piece in the orientation it will be packed in."""

    index: int
    piece: CutPiece
    width: int
    length: int
    direction: PatternDirection
    rotated: bool


def _orientations(piece: CutPiece) -> Iterator[tuple[int, int, PatternDirection, bool]]:
    yield piece.width, piece.length, piece.pattern_direction, False
    if piece.can_rotate:
        yield piece.length, piece.width, piece.pattern_direction.rotated(), True


def _accepts(stock: StockPiece, width: int, length: int, direction: PatternDirection) -> bool:
    if width > stock.width or length > stock.length:
        return False
    return direction is PatternDirection.NONE or direction is stock.pattern_direction


def _orient(index: int, piece: CutPiece, stocks: Iterable[StockPiece]) -> _Placement | None:
    stocks = list(stocks)
    for width, length, direction, rotated in _orientations(piece):
        if any(_accepts(s, width, length, direction) for s in stocks):
            return _Placement(index, piece, width, length, direction, rotated)
    return None


def _pack_group(
    placements: list[_Placement],
    stocks: list[tuple[int, StockPiece]],
    remaining: dict[int, int | None],
    request: OptimizationRequest,
) -> tuple[list[ResultStockPiece], list[_Placement]]:
    """Pack one compatible group of pieces; returns the used sheets and leftovers.

    `remaining` is decremented for every sheet used from a limited stock.
    """
    kerf = request.cut_width
    packer = newPacker(
        mode=PackingMode.Offline,
        bin_algo=PackingBin.BFF,
        pack_algo=PACK_ALGORITHMS[request.method],
        sort_algo=SORT_AREA,
        rotation=False,
    )
    for index, stock in stocks:
        count = remaining[index]
        if count == 0:
            continue
        packer.add_bin(
            stock.width + kerf,
            stock.length + kerf,
            count=len(placements) if count is None else count,
            bid=index,
        )
    for p in placements:
        packer.add_rect(p.width + kerf, p.length + kerf, rid=p.index)
    packer.pack()

    by_index = {p.index: p for p in placements}
    stock_by_index = dict(stocks)
    placed: set[int] = set()
    sheets: list[ResultStockPiece] = []
    for abin in packer:
        stock = stock_by_index[abin.bid]
        if remaining[abin.bid] is not None:
            remaining[abin.bid] -= 1
        cut_pieces = []
        for rect in abin:
            p = by_index[rect.rid]
            placed.add(p.index)
            cut_pieces.append(
                ResultCutPiece(
                    external_id=p.piece.external_id,
                    x=rect.x,
                    y=rect.y,
                    width=p.width,
                    length=p.length,
                    pattern_direction=p.direction,
                    is_rotated=p.rotated,
                )
            )
        sheets.append(
            ResultStockPiece(
                width=stock.width,
                length=stock.length,
                pattern_direction=stock.pattern_direction,
                price=stock.price,
                cut_pieces=tuple(cut_pieces),
            )
        )

    return sheets, [p for p in placements if p.index not in placed]


def _rotate(p: _Placement) -> _Placement:
    return _Placement(p.index, p.piece, p.length, p.width, p.direction.rotated(), not p.rotated)


def _pack_groups(
    groups: dict[PatternDirection, list[_Placement]],
    stocks: list[tuple[int, StockPiece]],
    remaining: dict[int, int | None],
    request: OptimizationRequest,
    sheets: list[ResultStockPiece],
) -> list[_Placement]:
    """Pack each direction group on its compatible stock; returns the leftovers."""
    unplaced: list[_Placement] = []
    for direction, placements in groups.items():
        eligible = [
            (i, s) for i, s in stocks
            if direction is PatternDirection.NONE or s.pattern_direction is direction
        ]
        used, leftovers = _pack_group(placements, eligible, remaining, request)
        sheets.extend(used)
        unplaced.extend(leftovers)
    return unplaced


def _solve(
    request: OptimizationRequest, stocks: list[tuple[int, StockPiece]]
) -> Solution:
    """Lay out every cut piece on `stocks` or raise `NoFitError`."""
    placements: list[_Placement] = []
    for index, piece in enumerate(request.cut_pieces):
        placement = _orient(index, piece, (s for _, s in stocks))
        if placement is None:
            raise NoFitError(piece)
        placements.append(placement)

    # Seeded shuffle; the stable area sort inside rectpack keeps it for ties.
    Random(request.random_seed).shuffle(placements)
    groups: dict[PatternDirection, list[_Placement]] = {}
    for placement in placements:
        groups.setdefault(placement.direction, []).append(placement)

    remaining = {index: stock.quantity for index, stock in stocks}
    sheets: list[ResultStockPiece] = []
    unplaced = _pack_groups(groups, stocks, remaining, request, sheets)

    # Limited stock can run out for the chosen orientation; give the leftovers
    # their other orientation on whatever stock is still available.
    retry: dict[PatternDirection, list[_Placement]] = {}
    stuck: list[_Placement] = []
    for p in unplaced:
        if p.piece.can_rotate:
            retry.setdefault(p.direction.rotated(), []).append(_rotate(p))
        else:
            stuck.append(p)
    unplaced = stuck + _pack_groups(retry, stocks, remaining, request, sheets)

    if unplaced:
        first = min(unplaced, key=lambda p: p.index)
        raise NoFitError(first.piece)

    used_area = sum(s.width * s.length for s in sheets)
    placed_area = sum(p.width * p.length for s in sheets for p in s.cut_pieces)
    return Solution(
        fitness=placed_area / used_area if used_area else 0.0,
        price=sum(s.price for s in sheets),
        stock_pieces=tuple(sheets),
    )


def optimize(request: OptimizationRequest) -> Solution:
    """Optimize the cut layout for `request`.

    Raises:
        NoFitError: for the first cut piece (in request order) that can't be
            placed on any stock piece.
    """
    stocks = list(enumerate(request.stock_pieces))
    if request.allow_mixed_stock_sizes or not stocks or not request.cut_pieces:
        return _solve(request, stocks)

    # One stock size for the whole job: cheapest complete layout, then fittest.
    candidates: list[Solution] = []
    first_error: NoFitError | None = None
    for stock in stocks:
        try:
            candidates.append(_solve(request, [stock]))
        except NoFitError as exc:
            first_error = first_error or exc
    if not candidates:
        raise first_error
    return min(candidates, key=lambda s: (s.price, -s.fitness))
