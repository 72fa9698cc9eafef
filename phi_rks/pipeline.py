"""
存档からレーティングまでの処理パイプライン。

復号 -> デコード -> エンリッチ -> 集計 -> (任意で)推分ACC予測 を順に実行する。
各段はリクエストごとに独立しており、共有する可変状態は推分ACCキャッシュのみ。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple, Union

from phi_rks.catalog import Catalog
from phi_rks.config import CryptoConfig, PushAccConfig
from phi_rks.models import (
    DecodedSave,
    Difficulty,
    EnrichedRecord,
    PushAccPrediction,
    RankedRecord,
    Resolution,
    ResolutionKind,
)
from phi_rks.push_acc import predict_push_acc, predict_rating_push_acc
from phi_rks.push_acc_cache import PushAccCache, PushAccCheck
from phi_rks.ranking import B30Summary, b30_breakdown, best_n, overall_rating, sort_records, validate_n
from phi_rks.rating import PHI_ACC, EnrichmentResult, enrich_save
from phi_rks.save_crypto import decrypt_save
from phi_rks.save_decoder import decode_save

logger = logging.getLogger(__name__)


def parse_save(blob: Union[bytes, str], crypto: Optional[CryptoConfig] = None) -> DecodedSave:
    """存档 blob を復号・デコードする。"""
    return decode_save(decrypt_save(blob, crypto))


def parse_save_with_ratings(
    blob: Union[bytes, str],
    catalog: Catalog,
    crypto: Optional[CryptoConfig] = None,
) -> Tuple[DecodedSave, EnrichmentResult]:
    """存档 blob を復号・デコードし、定数とレーティングを付与する。"""
    save = parse_save(blob, crypto)
    return save, enrich_save(save, catalog)


@dataclass(frozen=True)
class PlayerReport:
    """
    1プレイヤー分の集計結果。

    Attributes:
        overall_rating: 上位30件平均の総合レーティング。
        best: レーティング上位 n 件。
        b30: ゲーム内表示方式(Best27 + Phi3)の内訳。
        unrated: 定数が見つからなかった譜面。
    """

    overall_rating: float
    best: List[RankedRecord]
    b30: B30Summary
    unrated: List[Tuple[str, Difficulty]] = field(default_factory=list)


def build_report(enriched: EnrichmentResult, n: int = 30) -> PlayerReport:
    return PlayerReport(
        overall_rating=overall_rating(enriched.records),
        best=best_n(enriched.records, n),
        b30=b30_breakdown(enriched.records),
        unrated=list(enriched.unrated),
    )


@dataclass(frozen=True)
class SongRecords:
    """
    楽曲クエリに対する成績の検索結果。

    resolution が UNIQUE でない場合、records は常に空。
    """

    resolution: Resolution
    records: List[EnrichedRecord] = field(default_factory=list)


def song_records(
    catalog: Catalog,
    records: Sequence[EnrichedRecord],
    query: str,
    difficulty: Optional[Difficulty] = None,
    fuzzy: bool = False,
) -> SongRecords:
    """
    クエリ(楽曲ID・楽曲名・別名)で楽曲を特定し、その楽曲の成績を難易度順に返す。

    Raises:
        InvalidParameterError: クエリが空の場合。
    """
    resolution = catalog.resolve_identifier(query, fuzzy=fuzzy)
    if resolution.kind != ResolutionKind.UNIQUE:
        return SongRecords(resolution=resolution)

    found = [
        r for r in records
        if r.song_id == resolution.song_id and (difficulty is None or r.difficulty == difficulty)
    ]
    found.sort(key=lambda r: r.difficulty.bit_index)
    return SongRecords(resolution=resolution, records=found)


def rating_push_accs(records: Sequence[EnrichedRecord], limit: int = 10) -> List[PushAccPrediction]:
    """
    レーティング上位から Phi でない譜面を limit 件選び、
    総合レーティング表示値を 0.01 上げるのに必要な ACC をそれぞれ予測する。
    """
    limit = validate_n(limit)
    targets = [r for r in sort_records(records) if r.accuracy < PHI_ACC][:limit]
    return [predict_rating_push_acc(records, r) for r in targets]


class PushAccService:
    """
    BestN カットライン直下の譜面について、キャッシュ経由で推分ACCを求める。
    """

    def __init__(self, cache: PushAccCache, config: Optional[PushAccConfig] = None):
        self.cache = cache
        self.config = config or PushAccConfig()

    def candidates(
        self,
        records: Sequence[EnrichedRecord],
        n: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[EnrichedRecord]:
        """BestN 圏外で、まだ Phi でない譜面をレーティング順に limit 件返す。"""
        n = validate_n(n if n is not None else self.config.best_n)
        limit = validate_n(limit if limit is not None else self.config.candidate_limit)
        below = sort_records(records)[n:]
        return [r for r in below if r.accuracy < PHI_ACC][:limit]

    def check(
        self,
        player_id: str,
        records: Sequence[EnrichedRecord],
        candidate: EnrichedRecord,
        n: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> PushAccCheck:
        """1譜面分の推分ACCをキャッシュ経由で求める。"""
        n = validate_n(n if n is not None else self.config.best_n)
        best = best_n(records, n)
        return self.cache.check(
            player_id,
            candidate,
            lambda: predict_push_acc(best, n, candidate),
            now=now,
        )

    def check_candidates(
        self,
        player_id: str,
        records: Sequence[EnrichedRecord],
        n: Optional[int] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[PushAccCheck]:
        n = validate_n(n if n is not None else self.config.best_n)
        best = best_n(records, n)
        results = []
        for candidate in self.candidates(records, n, limit):
            results.append(
                self.cache.check(
                    player_id,
                    candidate,
                    lambda c=candidate: predict_push_acc(best, n, c),
                    now=now,
                )
            )
        cached = sum(1 for r in results if r.from_cache)
        logger.info(
            "push acc for %s: %d candidates, %d from cache",
            player_id,
            len(results),
            cached,
        )
        return results
