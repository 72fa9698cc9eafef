"""
BestN の選出と総合レーティングの集計。

並び順はレーティング降順、同値は ACC 降順 -> 楽曲ID昇順 -> 難易度順で決める。
同じ入力に対して常に同じ順序を返す。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from phi_rks.errors import InvalidParameterError
from phi_rks.models import EnrichedRecord, RankedRecord

OVERALL_BEST_COUNT = 30
B30_BEST_COUNT = 27
B30_PHI_COUNT = 3


def _sort_key(record: EnrichedRecord):
    return (-record.rating, -record.accuracy, record.song_id, record.difficulty.bit_index)


def sort_records(records: Iterable[EnrichedRecord]) -> List[EnrichedRecord]:
    return sorted(records, key=_sort_key)


def validate_n(n) -> int:
    if isinstance(n, bool) or not isinstance(n, int) or n < 1:
        raise InvalidParameterError(f"n must be a positive integer: {n!r}")
    return n


def best_n(records: Iterable[EnrichedRecord], n: int) -> List[RankedRecord]:
    """
    レーティング上位 n 件を順位付きで返す。

    件数が n に満たない場合は全件を返す(埋め草は入れない)。

    Raises:
        InvalidParameterError: n が正の整数でない場合。
    """
    n = validate_n(n)
    ordered = sort_records(records)[:n]
    return [RankedRecord(rank=i + 1, record=r) for i, r in enumerate(ordered)]


def overall_rating(records: Iterable[EnrichedRecord]) -> float:
    """上位30件(不足時は全件)のレーティング平均。成績が無ければ 0.0。"""
    top = best_n(records, OVERALL_BEST_COUNT)
    if not top:
        return 0.0
    return sum(r.rating for r in top) / len(top)


def round_rating(value: float) -> float:
    """表示用に小数第2位へ丸める。"""
    return math.floor(value * 100.0 + 0.5) / 100.0


@dataclass(frozen=True)
class B30Summary:
    """
    ゲーム内表示の B30 内訳。

    Attributes:
        rating: (Best27 合計 + Phi3 合計) / 30。
        best: レーティング上位27件。
        phi_best: Phi 成績のレーティング上位3件。
    """

    rating: float
    best: List[RankedRecord]
    phi_best: List[RankedRecord]


def b30_breakdown(records: Sequence[EnrichedRecord]) -> B30Summary:
    """ゲーム内表示と同じ Best27 + Phi3 の方式で集計する。"""
    best = best_n(records, B30_BEST_COUNT)
    phi_best = best_n([r for r in records if r.is_phi], B30_PHI_COUNT)
    total = sum(r.rating for r in best) + sum(r.rating for r in phi_best)
    rating = total / float(B30_BEST_COUNT + B30_PHI_COUNT) if (best or phi_best) else 0.0
    return B30Summary(rating=rating, best=best, phi_best=phi_best)
