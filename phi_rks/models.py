"""
データモデル定義モジュール。

存档のデコード結果、難易度カタログのエントリ、レーティング付きの成績、
推分ACCの予測結果など、各処理段の間で受け渡す値を定義する。
いずれも不変(frozen)で、リクエスト間で共有しても安全である。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple


class Difficulty(str, Enum):
    """
    譜面の難易度区分。

    値の並び順が存档内のビット位置(0..3)に対応する。
    """

    EZ = "EZ"
    HD = "HD"
    IN = "IN"
    AT = "AT"

    @property
    def bit_index(self) -> int:
        return _DIFFICULTY_ORDER.index(self)

    @classmethod
    def from_bit_index(cls, index: int) -> "Difficulty":
        return _DIFFICULTY_ORDER[index]


_DIFFICULTY_ORDER: Tuple[Difficulty, ...] = (
    Difficulty.EZ,
    Difficulty.HD,
    Difficulty.IN,
    Difficulty.AT,
)


@dataclass(frozen=True)
class RawScore:
    """
    存档に記録された1譜面分の成績。

    - score はゲーム内スコア(最大 1,000,000)
    - accuracy は百分率(0〜100)
    - full_combo は存档の FC ビットそのもの(AP も含む)
    """

    score: int
    accuracy: float
    full_combo: bool

    @property
    def is_phi(self) -> bool:
        return self.accuracy == 100.0


@dataclass(frozen=True)
class SaveMember:
    """復号済みの存档メンバー1件。version はメンバー先頭の1バイト。"""

    name: str
    version: int
    payload: bytes


@dataclass(frozen=True)
class DecodedSave:
    """
    存档のデコード結果。

    game_record は 楽曲ID -> {難易度 -> RawScore} の対応。
    """

    progress: Dict[str, object] = field(default_factory=dict)
    settings: Dict[str, object] = field(default_factory=dict)
    user: Dict[str, object] = field(default_factory=dict)
    game_key: Dict[str, object] = field(default_factory=dict)
    game_record: Dict[str, Dict[Difficulty, RawScore]] = field(default_factory=dict)

    def chart_count(self) -> int:
        return sum(len(charts) for charts in self.game_record.values())


@dataclass(frozen=True)
class SongInfo:
    """
    1曲分の楽曲メタ情報。

    charters は難易度ごとの譜面制作者(存在しない場合はキー自体が無い)。
    """

    song_id: str
    name: str
    composer: str
    illustrator: Optional[str] = None
    charters: Dict[Difficulty, str] = field(default_factory=dict)
    aliases: frozenset = frozenset()


@dataclass(frozen=True)
class DifficultyEntry:
    """(楽曲ID, 難易度) に対応する定数と楽曲情報。"""

    song_id: str
    difficulty: Difficulty
    constant: float
    song_name: str
    artist: str
    aliases: frozenset = frozenset()


class ResolutionKind(str, Enum):
    UNIQUE = "unique"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Resolution:
    """
    楽曲検索の結果。

    - UNIQUE: song_id に一意に決まった楽曲ID
    - AMBIGUOUS: candidates に該当した全楽曲ID(昇順)
    - NOT_FOUND: どちらも空
    """

    kind: ResolutionKind
    song_id: Optional[str] = None
    candidates: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EnrichedRecord:
    """定数とレーティングを付与した1譜面分の成績。"""

    song_id: str
    difficulty: Difficulty
    score: int
    accuracy: float
    full_combo: bool
    difficulty_constant: float
    rating: float
    song_name: str = ""

    @property
    def chart_key(self) -> Tuple[str, Difficulty]:
        return (self.song_id, self.difficulty)

    @property
    def is_phi(self) -> bool:
        return self.accuracy == 100.0


@dataclass(frozen=True)
class RankedRecord:
    """BestN 内での順位(1始まり)を付与した成績。"""

    rank: int
    record: EnrichedRecord

    @property
    def rating(self) -> float:
        return self.record.rating


@dataclass(frozen=True)
class PushAccPrediction:
    """
    推分ACCの予測結果。

    reachable が False の場合は ACC 100% でも目標に届かない(Unreachable)。
    その場合 target_accuracy は None。
    """

    song_id: str
    difficulty: Difficulty
    current_accuracy: float
    target_accuracy: Optional[float]
    reachable: bool

    @classmethod
    def unreachable(cls, song_id: str, difficulty: Difficulty, current_accuracy: float) -> "PushAccPrediction":
        return cls(
            song_id=song_id,
            difficulty=difficulty,
            current_accuracy=current_accuracy,
            target_accuracy=None,
            reachable=False,
        )


@dataclass(frozen=True)
class PushAccCacheEntry:
    """push_acc_cache テーブルの1行。"""

    player_id: str
    song_id: str
    difficulty: Difficulty
    last_checked_accuracy: float
    last_check_time: str
    target_accuracy: Optional[float]
    reachable: bool
