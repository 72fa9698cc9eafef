"""存档 -> レーティング集計 -> 推分ACC までの通しテスト。"""

from __future__ import annotations

import base64
import dataclasses
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from phi_rks.config import PushAccConfig
from phi_rks.errors import DecompressionError, InvalidParameterError
from phi_rks.models import DecodedSave, Difficulty, ResolutionKind
from phi_rks.pipeline import (
    PushAccService,
    build_report,
    parse_save,
    parse_save_with_ratings,
    rating_push_accs,
    song_records,
)
from phi_rks.push_acc_cache import PushAccCache
from phi_rks.ranking import overall_rating, round_rating
from phi_rks.rating import chart_rating
from phi_rks.save_crypto import build_save_blob
from phi_rks.save_encoder import encode_save

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def save_blob(decoded_save: DecodedSave) -> bytes:
    return build_save_blob(encode_save(decoded_save))


@pytest.mark.light
def test_parse_save_accepts_base64(save_blob: bytes, decoded_save: DecodedSave):
    text = base64.b64encode(save_blob).decode("ascii")
    assert parse_save(text) == decoded_save


@pytest.mark.light
def test_parse_save_rejects_garbage():
    with pytest.raises(DecompressionError):
        parse_save(b"PK\x03\x04 not really a zip archive at all")


@pytest.mark.full
def test_report_from_save(save_blob: bytes, catalog):
    save, enriched = parse_save_with_ratings(save_blob, catalog)
    report = build_report(enriched, n=3)

    assert save.chart_count() == 7
    assert [r.record.chart_key for r in report.best] == [
        ("Igallta.SeURa", Difficulty.IN),
        ("Spasmodic.MiiBot", Difficulty.HD),
        ("Igallta.SeURa", Difficulty.AT),
    ]
    expected = [
        chart_rating(92.0, 15.8),
        chart_rating(99.5, 9.5),
        chart_rating(85.0, 16.3),
        chart_rating(98.5, 6.5),
        2.0,
        0.0,
    ]
    assert report.overall_rating == pytest.approx(sum(expected) / 6)
    assert [r.record.song_id for r in report.b30.phi_best] == ["Glaciaxion.SunsetRay"]
    assert report.unrated == [("Unknown.Song", Difficulty.EZ)]


@pytest.mark.full
def test_push_acc_service_uses_cache(save_blob: bytes, catalog, tmp_path: Path):
    _, enriched = parse_save_with_ratings(save_blob, catalog)
    cache = PushAccCache(str(tmp_path / "cache.sqlite"), cooldown_seconds=300)
    service = PushAccService(cache, PushAccConfig(best_n=3, candidate_limit=5))

    candidates = service.candidates(enriched.records)
    # Phi 済みの Glaciaxion EZ は対象外
    assert [c.chart_key for c in candidates] == [
        ("Glaciaxion.SunsetRay", Difficulty.IN),
        ("Rrharil.TeamGrimoire", Difficulty.AT),
    ]

    first = service.check_candidates("player1", enriched.records, now=NOW)
    assert [c.from_cache for c in first] == [False, False]

    glaciaxion_in = first[0].prediction
    # 定数 6.5 では 100% 未満で 3 位(Igallta AT)を超えられない
    assert glaciaxion_in.target_accuracy == 100.0

    rrharil_at = first[1].prediction
    assert rrharil_at.reachable is True
    assert chart_rating(rrharil_at.target_accuracy, 16.4) > chart_rating(85.0, 16.3)

    second = service.check_candidates("player1", enriched.records, now=NOW + timedelta(seconds=60))
    assert [c.from_cache for c in second] == [True, True]
    assert [c.prediction for c in second] == [c.prediction for c in first]


@pytest.mark.light
def test_push_acc_service_rejects_chart_in_best(save_blob: bytes, catalog, tmp_path: Path):
    _, enriched = parse_save_with_ratings(save_blob, catalog)
    service = PushAccService(PushAccCache(str(tmp_path / "cache.sqlite"), cooldown_seconds=300))
    top = max(enriched.records, key=lambda r: r.rating)

    with pytest.raises(InvalidParameterError):
        service.check("player1", enriched.records, top, n=3, now=NOW)


@pytest.mark.light
def test_song_records_by_alias_and_difficulty(save_blob: bytes, catalog):
    _, enriched = parse_save_with_ratings(save_blob, catalog)

    result = song_records(catalog, enriched.records, "イガルタ")
    assert result.resolution.kind == ResolutionKind.UNIQUE
    assert [r.chart_key for r in result.records] == [
        ("Igallta.SeURa", Difficulty.IN),
        ("Igallta.SeURa", Difficulty.AT),
    ]

    only_at = song_records(catalog, enriched.records, "Igallta.SeURa", Difficulty.AT)
    assert [r.accuracy for r in only_at.records] == [85.0]

    not_played = song_records(catalog, enriched.records, "Igallta.SeURa", Difficulty.EZ)
    assert not_played.resolution.song_id == "Igallta.SeURa"
    assert not_played.records == []


@pytest.mark.light
def test_song_records_ambiguous_or_missing_has_no_records(save_blob: bytes, catalog):
    _, enriched = parse_save_with_ratings(save_blob, catalog)

    ambiguous = song_records(catalog, enriched.records, "冬")
    assert ambiguous.resolution.kind == ResolutionKind.AMBIGUOUS
    assert ambiguous.resolution.candidates == ("Winter.Alpha", "Winter.Beta")
    assert ambiguous.records == []

    missing = song_records(catalog, enriched.records, "no such song")
    assert missing.resolution.kind == ResolutionKind.NOT_FOUND
    assert missing.records == []

    with pytest.raises(InvalidParameterError):
        song_records(catalog, enriched.records, "   ")


@pytest.mark.full
def test_rating_push_accs_raise_displayed_rating(save_blob: bytes, catalog):
    _, enriched = parse_save_with_ratings(save_blob, catalog)
    records = enriched.records

    predictions = rating_push_accs(records, limit=10)
    # Phi 済みの Glaciaxion EZ を除く5譜面
    assert len(predictions) == 5
    assert ("Glaciaxion.SunsetRay", Difficulty.EZ) not in [(p.song_id, p.difficulty) for p in predictions]
    assert len(rating_push_accs(records, limit=2)) == 2

    first = predictions[0]
    assert (first.song_id, first.difficulty) == ("Igallta.SeURa", Difficulty.IN)
    assert first.reachable is True
    assert first.target_accuracy > first.current_accuracy

    threshold = round_rating(overall_rating(records)) + 0.005
    pushed = [
        dataclasses.replace(
            r,
            accuracy=first.target_accuracy,
            rating=chart_rating(first.target_accuracy, r.difficulty_constant),
        )
        if r.chart_key == ("Igallta.SeURa", Difficulty.IN)
        else r
        for r in records
    ]
    assert overall_rating(pushed) >= threshold


@pytest.mark.light
def test_rating_push_accs_rejects_bad_limit(save_blob: bytes, catalog):
    _, enriched = parse_save_with_ratings(save_blob, catalog)
    with pytest.raises(InvalidParameterError):
        rating_push_accs(enriched.records, limit=0)
