"""難易度カタログの読み込み・検索・リロードのテスト。"""

from __future__ import annotations

from pathlib import Path

import pytest

from phi_rks.catalog import CatalogStore, load_catalog
from phi_rks.errors import CatalogLoadError, InvalidParameterError
from phi_rks.models import Difficulty, ResolutionKind


@pytest.mark.light
def test_load_catalog_builds_entries(catalog):
    entry = catalog.lookup("Igallta.SeURa", Difficulty.AT)
    assert entry is not None
    assert entry.constant == 16.3
    assert entry.song_name == "Igallta"
    assert entry.artist == "Se-U-Ra"
    assert "イガルタ" in entry.aliases

    # 空欄の定数は譜面なし扱い
    assert catalog.lookup("Glaciaxion.SunsetRay", Difficulty.AT) is None
    assert catalog.constants_of("Glaciaxion.SunsetRay") == {
        Difficulty.EZ: 1.0,
        Difficulty.HD: 3.5,
        Difficulty.IN: 6.5,
    }
    assert len(catalog) == 21


@pytest.mark.light
def test_song_info_keeps_charters(catalog):
    song = catalog.song("Glaciaxion.SunsetRay")
    assert song.illustrator == "巫女"
    assert song.charters[Difficulty.IN] == "NerSAN"
    assert Difficulty.AT not in song.charters
    assert catalog.song("Winter.Alpha").illustrator is None


@pytest.mark.light
def test_alias_keyed_by_song_name(catalog):
    assert "spa" in catalog.song("Spasmodic.MiiBot").aliases


@pytest.mark.light
def test_resolve_by_exact_id(catalog):
    result = catalog.resolve_identifier("Igallta.SeURa")
    assert result.kind == ResolutionKind.UNIQUE
    assert result.song_id == "Igallta.SeURa"


@pytest.mark.light
def test_resolve_by_name_ignores_case_and_width(catalog):
    result = catalog.resolve_identifier("  ＩＧＡＬＬＴＡ ")
    assert result.kind == ResolutionKind.UNIQUE
    assert result.song_id == "Igallta.SeURa"

    result = catalog.resolve_identifier("rrhar’il")
    assert result.song_id == "Rrharil.TeamGrimoire"


@pytest.mark.light
def test_shared_alias_is_ambiguous_with_all_candidates(catalog):
    result = catalog.resolve_identifier("冬")
    assert result.kind == ResolutionKind.AMBIGUOUS
    assert result.song_id is None
    assert result.candidates == ("Winter.Alpha", "Winter.Beta")

    result = catalog.resolve_identifier("winter")
    assert result.candidates == ("Winter.Alpha", "Winter.Beta")


@pytest.mark.light
def test_substring_match_only_when_fuzzy(catalog):
    assert catalog.resolve_identifier("glacia").kind == ResolutionKind.NOT_FOUND

    result = catalog.resolve_identifier("glacia", fuzzy=True)
    assert result.kind == ResolutionKind.UNIQUE
    assert result.song_id == "Glaciaxion.SunsetRay"


@pytest.mark.light
def test_empty_query_is_invalid(catalog):
    with pytest.raises(InvalidParameterError):
        catalog.resolve_identifier("   ")


@pytest.mark.light
def test_missing_source_file_raises(tmp_path: Path, write_catalog):
    sources = write_catalog(tmp_path / "info")
    Path(sources.nicklist_path).unlink()
    with pytest.raises(CatalogLoadError):
        load_catalog(sources)


@pytest.mark.light
@pytest.mark.parametrize(
    "difficulty_csv",
    [
        "id,EZ,HD,IN,AT\nIgallta.SeURa,4.0,9.0,abc,16.3\n",
        "id,EZ,HD,IN,AT\nIgallta.SeURa,4.0,9.0,-1,16.3\n",
        "id,EZ,HD,IN,AT\nIgallta.SeURa,4.0,9.0,nan,16.3\n",
        "id,EZ,HD,IN,AT\nIgallta.SeURa,4.0,9.0,15.8,16.3\nIgallta.SeURa,4.0,9.0,15.8,16.3\n",
        "id,EZ,HD,IN,AT\nNoSuch.Song,4.0,9.0,15.8,16.3\n",
        "id,EZ,HD,IN,AT\nIgallta.SeURa,4.0,9.0,15.8,16.3,99\n",
        "EZ,HD,IN,AT\n4.0,9.0,15.8,16.3\n",
    ],
)
def test_bad_difficulty_rows_are_rejected(tmp_path: Path, write_catalog, difficulty_csv: str):
    sources = write_catalog(tmp_path / "info", difficulty=difficulty_csv)
    with pytest.raises(CatalogLoadError):
        load_catalog(sources)


@pytest.mark.light
def test_duplicate_song_in_info_is_rejected(tmp_path: Path, write_catalog):
    info = (
        "id,song,composer,illustrator,EZ,HD,IN,AT\n"
        "Igallta.SeURa,Igallta,Se-U-Ra,,,,,\n"
        "Igallta.SeURa,Igallta,Se-U-Ra,,,,,\n"
    )
    sources = write_catalog(tmp_path / "info", info=info, difficulty="id,EZ,HD,IN,AT\n", nicklist="{}\n")
    with pytest.raises(CatalogLoadError):
        load_catalog(sources)


@pytest.mark.light
def test_alias_key_naming_ambiguous_song_is_rejected(tmp_path: Path, write_catalog):
    sources = write_catalog(tmp_path / "info", nicklist="Winter:\n  - ふゆ\n")
    with pytest.raises(CatalogLoadError):
        load_catalog(sources)


@pytest.mark.light
def test_reload_swaps_snapshot(catalog_sources):
    store = CatalogStore(catalog_sources)
    before = store.current

    updated = catalog_sources.difficulty_path
    text = Path(updated).read_text(encoding="utf-8").replace("Igallta.SeURa,4.0,9.0,15.8,16.3", "Igallta.SeURa,4.0,9.0,15.9,16.3")
    Path(updated).write_text(text, encoding="utf-8")

    after = store.reload()
    assert store.current is after
    assert after.lookup("Igallta.SeURa", Difficulty.IN).constant == 15.9
    # 古いスナップショットは変更されない
    assert before.lookup("Igallta.SeURa", Difficulty.IN).constant == 15.8


@pytest.mark.light
def test_failed_reload_keeps_previous_snapshot(tmp_path: Path, write_catalog, catalog_sources):
    store = CatalogStore(catalog_sources)
    before = store.current

    broken = write_catalog(tmp_path / "broken", difficulty="id,EZ,HD,IN,AT\nIgallta.SeURa,x,,,\n")
    with pytest.raises(CatalogLoadError):
        store.reload(broken)

    assert store.current is before
    assert store.sources == catalog_sources
