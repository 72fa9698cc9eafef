from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from phi_rks.catalog import CatalogSources, load_catalog
from phi_rks.config import CatalogConfig
from phi_rks.models import DecodedSave, Difficulty, RawScore


INFO_CSV = """id,song,composer,illustrator,EZ,HD,IN,AT
Glaciaxion.SunsetRay,Glaciaxion,SunsetRay,巫女,NerSAN,NerSAN,NerSAN,
Igallta.SeURa,Igallta,Se-U-Ra,Catrong,TN,TN,TN,TN
Rrharil.TeamGrimoire,Rrhar'il,Team Grimoire,Sta,Barbarianerman,Barbarianerman,Barbarianerman,Barbarianerman
Spasmodic.MiiBot,Spasmodic,姜米條,Sta,晨,晨,晨,晨
Winter.Alpha,Winter,Alpha,,a,a,a,
Winter.Beta,Winter,Beta,,b,b,b,
"""

DIFFICULTY_CSV = """id,EZ,HD,IN,AT
Glaciaxion.SunsetRay,1.0,3.5,6.5,
Igallta.SeURa,4.0,9.0,15.8,16.3
Rrharil.TeamGrimoire,4.0,8.0,14.5,16.4
Spasmodic.MiiBot,3.5,9.5,15.0,16.0
Winter.Alpha,2.0,5.0,10.0,
Winter.Beta,2.5,6.0,11.0,
"""

NICKLIST_YAML = """Igallta.SeURa:
  - イガルタ
Rrharil.TeamGrimoire:
  - rrh
Spasmodic:
  - spa
Winter.Alpha:
  - 冬
Winter.Beta:
  - 冬
"""


def write_catalog_files(
    data_dir: Path,
    info: str = INFO_CSV,
    difficulty: str = DIFFICULTY_CSV,
    nicklist: str = NICKLIST_YAML,
) -> CatalogSources:
    """テスト用のカタログソース3ファイルを書き出し、そのパスを返す。"""
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "info.csv").write_text(info, encoding="utf-8")
    (data_dir / "difficulty.csv").write_text(difficulty, encoding="utf-8")
    (data_dir / "nicklist.yaml").write_text(nicklist, encoding="utf-8")
    return CatalogSources.from_config(CatalogConfig(data_dir=str(data_dir)))


def make_progress() -> dict:
    return {
        "isFirstRun": False,
        "legacyChapterFinished": True,
        "alreadyShowCollectionTip": True,
        "alreadyShowAutoUnlockINTip": False,
        "completed": "3.0",
        "songUpdateInfo": 4,
        "challengeModeRank": 348,
        "money": [120, 3, 0, 0, 0],
        "unlockFlagOfSpasmodic": [True, True, False, False],
        "unlockFlagOfIgallta": [True, False, False, False],
        "unlockFlagOfRrharil": [True, True, True, True],
        "flagOfSongRecordKey": [True, False, True, False, True, False, True, False],
        "randomVersionUnlocked": [True, True, False, False, False, False],
        "chapter8UnlockBegin": True,
        "chapter8UnlockSecondPhase": False,
        "chapter8Passed": False,
        "chapter8SongUnlocked": [True, False, False, False, False, False],
        "flagOfSongRecordKeyTakumi": [True, False, True],
    }


def make_settings() -> dict:
    return {
        "chordSupport": True,
        "fcAPIndicator": True,
        "enableHitSound": False,
        "lowResolutionMode": False,
        "deviceName": "Pixel 8",
        "bright": 1.0,
        "musicVolume": 0.75,
        "effectVolume": 0.5,
        "hitSoundVolume": 0.25,
        "soundOffset": 0.0,
        "noteScale": 1.25,
    }


def make_user() -> dict:
    return {
        "showPlayerId": 1,
        "selfIntro": "よろしく",
        "avatar": "Glaciaxion",
        "background": "Igallta.SeURa",
    }


def make_game_key() -> dict:
    return {
        "keyList": {
            "Glaciaxion": {"type": [True, False, False, False, False], "flag": [1]},
            "Igallta": {"type": [False, True, True, False, False], "flag": [1, 0, 2]},
        },
        "lanotaReadKeys": [True, True, False, False, False, False],
        "camelliaReadKey": [False] * 8,
        "sideStory4BeginReadKey": 1,
        "oldScoreClearedV390": 0,
    }


def make_game_record() -> dict:
    # f32 で誤差なく表せる ACC のみ使う
    return {
        "Glaciaxion.SunsetRay": {
            Difficulty.EZ: RawScore(score=1000000, accuracy=100.0, full_combo=True),
            Difficulty.IN: RawScore(score=985000, accuracy=98.5, full_combo=True),
        },
        "Igallta.SeURa": {
            Difficulty.IN: RawScore(score=920000, accuracy=92.0, full_combo=False),
            Difficulty.AT: RawScore(score=850000, accuracy=85.0, full_combo=False),
        },
        "Rrharil.TeamGrimoire": {
            Difficulty.AT: RawScore(score=600000, accuracy=69.5, full_combo=False),
        },
        "Spasmodic.MiiBot": {
            Difficulty.HD: RawScore(score=995000, accuracy=99.5, full_combo=True),
        },
        "Unknown.Song": {
            Difficulty.EZ: RawScore(score=750000, accuracy=75.0, full_combo=False),
        },
        "Winter.Alpha": {},
    }


def make_decoded_save() -> DecodedSave:
    return DecodedSave(
        progress=make_progress(),
        settings=make_settings(),
        user=make_user(),
        game_key=make_game_key(),
        game_record=make_game_record(),
    )


@pytest.fixture
def catalog_sources(tmp_path: Path) -> CatalogSources:
    return write_catalog_files(tmp_path / "info")


@pytest.fixture
def catalog(catalog_sources: CatalogSources):
    return load_catalog(catalog_sources)


@pytest.fixture
def decoded_save() -> DecodedSave:
    return make_decoded_save()


@pytest.fixture
def write_catalog():
    """既定のソース内容を一部だけ差し替えてカタログを書き出すための関数。"""
    return write_catalog_files
