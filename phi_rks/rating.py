"""
譜面レーティングの計算と成績への付与。

レーティング曲線:
- ACC < 70            -> 0
- 70 <= ACC < 100     -> ((ACC - 55) / 45)^2 * 定数
- ACC == 100 (Phi)    -> 定数 + 1.0

70.0 と 100.0 ちょうどの境界値は順位付けに影響するため、比較は厳密に行う。
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Tuple

from phi_rks.catalog import Catalog
from phi_rks.errors import InvalidScoreError
from phi_rks.models import DecodedSave, Difficulty, DifficultyEntry, EnrichedRecord, RawScore

logger = logging.getLogger(__name__)

RATING_FLOOR_ACC = 70.0
CURVE_OFFSET = 55.0
CURVE_SPAN = 45.0
PHI_ACC = 100.0
PHI_BONUS = 1.0


def chart_rating(accuracy: float, constant: float) -> float:
    """
    ACC と定数から譜面レーティングを計算する。

    Args:
        accuracy: ACC(百分率)。
        constant: 譜面定数。

    Returns:
        レーティング(常に 0 以上)。

    Raises:
        InvalidScoreError: ACC が [0, 100] の範囲外、または NaN の場合。
    """
    if accuracy is None or math.isnan(accuracy) or accuracy < 0.0 or accuracy > PHI_ACC:
        raise InvalidScoreError(f"accuracy out of range [0, 100]: {accuracy}")
    if accuracy < RATING_FLOOR_ACC:
        return 0.0
    if accuracy == PHI_ACC:
        return constant + PHI_BONUS
    return ((accuracy - CURVE_OFFSET) / CURVE_SPAN) ** 2 * constant


def enrich_record(
    song_id: str,
    difficulty: Difficulty,
    raw: RawScore,
    entry: DifficultyEntry,
) -> EnrichedRecord:
    """RawScore に定数とレーティングを付与する。"""
    return EnrichedRecord(
        song_id=song_id,
        difficulty=difficulty,
        score=raw.score,
        accuracy=raw.accuracy,
        full_combo=raw.full_combo,
        difficulty_constant=entry.constant,
        rating=chart_rating(raw.accuracy, entry.constant),
        song_name=entry.song_name,
    )


@dataclass(frozen=True)
class EnrichmentResult:
    """
    存档全体のエンリッチ結果。

    unrated はカタログに定数が無かった (楽曲ID, 難易度) の一覧。
    既定値で補完せず、そのまま呼び出し側へ返す。
    """

    records: List[EnrichedRecord] = field(default_factory=list)
    unrated: List[Tuple[str, Difficulty]] = field(default_factory=list)


def enrich_save(save: DecodedSave, catalog: Catalog) -> EnrichmentResult:
    """
    デコード済み存档の全成績にレーティングを付与する。

    Raises:
        InvalidScoreError: 存档内の ACC が範囲外の場合。
    """
    records: List[EnrichedRecord] = []
    unrated: List[Tuple[str, Difficulty]] = []

    for song_id in sorted(save.game_record):
        charts = save.game_record[song_id]
        for difficulty in sorted(charts, key=lambda d: d.bit_index):
            entry = catalog.lookup(song_id, difficulty)
            if entry is None:
                unrated.append((song_id, difficulty))
                continue
            records.append(enrich_record(song_id, difficulty, charts[difficulty], entry))

    if unrated:
        logger.warning(
            "no difficulty constant for %d charts (e.g. %s)",
            len(unrated),
            ", ".join(f"{s}/{d.value}" for s, d in unrated[:5]),
        )
    return EnrichmentResult(records=records, unrated=unrated)
