"""
推分ACCの予測。

- predict_push_acc: BestN 圏外の譜面が N 位のレーティングを上回るのに必要な最小ACC。
  レーティング曲線を逆算して閉じた式で求める。
- predict_rating_push_acc: 1譜面の ACC を上げて、表示上の総合レーティング
  (小数第2位丸め)を 0.01 上げるのに必要な最小ACC。二分探索で求める。

ACC 100% でも届かない場合は reachable=False (Unreachable) を返す。
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import List, Sequence

from phi_rks.errors import InvalidParameterError
from phi_rks.models import EnrichedRecord, PushAccPrediction, RankedRecord
from phi_rks.ranking import validate_n, overall_rating, round_rating
from phi_rks.rating import (
    CURVE_OFFSET,
    CURVE_SPAN,
    PHI_ACC,
    PHI_BONUS,
    RATING_FLOOR_ACC,
    chart_rating,
)

logger = logging.getLogger(__name__)

ACC_STEP = 0.01
_SEARCH_ITERATIONS = 100
_SEARCH_EPSILON = 1e-5


def _ceil_step(value: float) -> float:
    """ACC_STEP 単位で切り上げる。"""
    return round(math.ceil(round(value / ACC_STEP, 6)) * ACC_STEP, 2)


def cutoff_rating(best: Sequence[RankedRecord], n: int) -> float:
    """N 位のレーティング。BestN に空きがある場合は 0.0。"""
    n = validate_n(n)
    if len(best) < n:
        return 0.0
    return best[n - 1].rating


def minimal_accuracy_above(cutoff: float, constant: float, current_accuracy: float):
    """
    rating(a, constant) > cutoff かつ a > current_accuracy を満たす最小の a を返す。

    ACC_STEP 刻みで表せる値を返し、存在しない場合は None を返す。
    """
    if current_accuracy >= PHI_ACC:
        return None

    floor_acc = max(RATING_FLOOR_ACC, _ceil_step(current_accuracy))
    if floor_acc <= current_accuracy:
        floor_acc = round(floor_acc + ACC_STEP, 2)

    # 100 未満の区間で到達できる上限は定数そのもの
    if constant > 0 and cutoff < constant:
        acc = CURVE_OFFSET + CURVE_SPAN * math.sqrt(max(cutoff, 0.0) / constant)
        acc = max(_ceil_step(acc), floor_acc)
        while acc < PHI_ACC and chart_rating(acc, constant) <= cutoff:
            acc = round(acc + ACC_STEP, 2)
        if acc < PHI_ACC:
            return acc

    if constant + PHI_BONUS > cutoff:
        return PHI_ACC
    return None


def predict_push_acc(
    best: Sequence[RankedRecord],
    n: int,
    candidate: EnrichedRecord,
) -> PushAccPrediction:
    """
    BestN 圏外の譜面が N 位を上回るために必要な最小ACCを予測する。

    Args:
        best: best_n で得た順位付きリスト(レーティング降順)。
        n: BestN の N。
        candidate: 圏外の譜面の成績。

    Returns:
        PushAccPrediction。届かない場合は reachable=False。

    Raises:
        InvalidParameterError: n が不正、または candidate が既に BestN 内にある場合。
    """
    n = validate_n(n)
    top = list(best[:n])
    if any(r.record.chart_key == candidate.chart_key for r in top):
        raise InvalidParameterError(
            f"{candidate.song_id}/{candidate.difficulty.value} is already in best {n}"
        )

    cutoff = cutoff_rating(top, n)
    target = minimal_accuracy_above(cutoff, candidate.difficulty_constant, candidate.accuracy)
    logger.debug(
        "push acc %s/%s: cutoff=%.4f constant=%.1f acc=%.4f -> %s",
        candidate.song_id,
        candidate.difficulty.value,
        cutoff,
        candidate.difficulty_constant,
        candidate.accuracy,
        target,
    )

    if target is None:
        return PushAccPrediction.unreachable(candidate.song_id, candidate.difficulty, candidate.accuracy)
    return PushAccPrediction(
        song_id=candidate.song_id,
        difficulty=candidate.difficulty,
        current_accuracy=candidate.accuracy,
        target_accuracy=target,
        reachable=True,
    )


def _simulate(records: Sequence[EnrichedRecord], candidate: EnrichedRecord, accuracy: float) -> float:
    """candidate の ACC を accuracy に置き換えたときの総合レーティング。"""
    simulated = replace(
        candidate,
        accuracy=accuracy,
        rating=chart_rating(accuracy, candidate.difficulty_constant),
    )
    others: List[EnrichedRecord] = [r for r in records if r.chart_key != candidate.chart_key]
    others.append(simulated)
    return overall_rating(others)


def predict_rating_push_acc(
    records: Sequence[EnrichedRecord],
    candidate: EnrichedRecord,
) -> PushAccPrediction:
    """
    総合レーティングの表示値を 0.01 上げるのに必要な candidate の最小ACCを予測する。

    目標は「現在の表示値 + 0.005」以上の精確値。ACC 100% で試算しても
    届かない場合は Unreachable。
    """
    current = overall_rating(records)
    threshold = round_rating(current) + 0.005
    unreachable = PushAccPrediction.unreachable(candidate.song_id, candidate.difficulty, candidate.accuracy)

    if candidate.accuracy >= PHI_ACC or _simulate(records, candidate, PHI_ACC) < threshold:
        return unreachable

    low = max(candidate.accuracy, RATING_FLOOR_ACC)
    high = PHI_ACC
    for _ in range(_SEARCH_ITERATIONS):
        if high - low < _SEARCH_EPSILON:
            break
        mid = low + (high - low) / 2.0
        if _simulate(records, candidate, mid) >= threshold:
            high = mid
        else:
            low = mid

    target = min(_ceil_step(high), PHI_ACC)
    if target <= candidate.accuracy:
        target = min(round(target + ACC_STEP, 2), PHI_ACC)
    if _simulate(records, candidate, target) < threshold:
        target = PHI_ACC

    return PushAccPrediction(
        song_id=candidate.song_id,
        difficulty=candidate.difficulty,
        current_accuracy=candidate.accuracy,
        target_accuracy=target,
        reachable=True,
    )
