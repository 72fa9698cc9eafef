"""
難易度カタログ。

外部の表データ(定数表CSV・楽曲情報CSV・別名YAML)を読み込み、
(楽曲ID, 難易度) -> DifficultyEntry の参照表と楽曲検索用の索引を構築する。

処理方針:
- 読み込みは起動時と明示的なリロード時のみ行い、構築後は読み取り専用
- ソースの欠落・不正行・キー重複は CatalogLoadError とし、先勝ちで黙って採用しない
- リロードは新しいスナップショットを丸ごと構築してから参照を差し替える
"""

from __future__ import annotations

import csv
import logging
import math
import os
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

import yaml

from phi_rks.config import CatalogConfig
from phi_rks.errors import CatalogLoadError, InvalidParameterError
from phi_rks.models import Difficulty, DifficultyEntry, Resolution, ResolutionKind, SongInfo
from phi_rks.normalize import normalize_name

logger = logging.getLogger(__name__)

INFO_REQUIRED_COLUMNS = ("id", "song", "composer")


@dataclass(frozen=True)
class CatalogSources:
    """
    カタログを構成する3つのソースファイルのパス。

    Attributes:
        difficulty_path: 定数表 CSV(id,EZ,HD,IN,AT)。
        info_path: 楽曲情報 CSV(id,song,composer,illustrator,EZ,HD,IN,AT)。
        nicklist_path: 別名 YAML(楽曲ID または楽曲名 -> 別名リスト)。
    """

    difficulty_path: str
    info_path: str
    nicklist_path: str

    @classmethod
    def from_config(cls, config: CatalogConfig) -> "CatalogSources":
        return cls(
            difficulty_path=os.path.join(config.data_dir, config.difficulty_file),
            info_path=os.path.join(config.data_dir, config.info_file),
            nicklist_path=os.path.join(config.data_dir, config.nicklist_file),
        )

    def paths(self) -> Tuple[str, str, str]:
        return (self.difficulty_path, self.info_path, self.nicklist_path)


class Catalog:
    """
    読み取り専用の難易度カタログ(1スナップショット)。

    インスタンスは構築後に変更しない。リロードは CatalogStore が
    新しいインスタンスへの差し替えで行う。
    """

    def __init__(
        self,
        songs: Mapping[str, SongInfo],
        constants: Mapping[Tuple[str, Difficulty], float],
    ):
        self._songs = MappingProxyType(dict(songs))

        entries: Dict[Tuple[str, Difficulty], DifficultyEntry] = {}
        for (song_id, difficulty), constant in constants.items():
            song = self._songs[song_id]
            entries[(song_id, difficulty)] = DifficultyEntry(
                song_id=song_id,
                difficulty=difficulty,
                constant=constant,
                song_name=song.name,
                artist=song.composer,
                aliases=song.aliases,
            )
        self._entries = MappingProxyType(entries)

        name_index: Dict[str, Set[str]] = {}
        alias_index: Dict[str, Set[str]] = {}
        for song in self._songs.values():
            name_index.setdefault(normalize_name(song.name), set()).add(song.song_id)
            for alias in song.aliases:
                alias_index.setdefault(normalize_name(alias), set()).add(song.song_id)
        self._name_index = MappingProxyType({k: frozenset(v) for k, v in name_index.items()})
        self._alias_index = MappingProxyType({k: frozenset(v) for k, v in alias_index.items()})

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def songs(self) -> Mapping[str, SongInfo]:
        return self._songs

    def song(self, song_id: str) -> Optional[SongInfo]:
        return self._songs.get(song_id)

    def lookup(self, song_id: str, difficulty: Difficulty) -> Optional[DifficultyEntry]:
        """(楽曲ID, 難易度) の定数エントリを返す。存在しない場合は None。"""
        return self._entries.get((song_id, difficulty))

    def constants_of(self, song_id: str) -> Dict[Difficulty, float]:
        return {
            d: self._entries[(song_id, d)].constant
            for d in Difficulty
            if (song_id, d) in self._entries
        }

    def resolve_identifier(self, query: str, fuzzy: bool = False) -> Resolution:
        """
        自由入力のクエリを楽曲IDへ解決する。

        照合順:
        1. 楽曲IDの完全一致(大文字小文字を区別する)
        2. 楽曲名・別名の正規化後の完全一致(大文字小文字を区別しない)
        3. fuzzy=True の場合のみ、楽曲名・別名の部分一致

        2 と 3 は該当した楽曲IDの集合で判定し、複数あれば候補を全件返す。

        Args:
            query: 検索文字列。
            fuzzy: 完全一致が無い場合に部分一致を試すかどうか。

        Returns:
            Resolution。

        Raises:
            InvalidParameterError: クエリが空の場合。
        """
        if query is None or not query.strip():
            raise InvalidParameterError("song query is empty")

        query = query.strip()
        if query in self._songs:
            return Resolution(kind=ResolutionKind.UNIQUE, song_id=query)

        key = normalize_name(query)
        matches = set(self._name_index.get(key, ())) | set(self._alias_index.get(key, ()))

        if not matches and fuzzy:
            for index in (self._name_index, self._alias_index):
                for name, song_ids in index.items():
                    if key in name:
                        matches.update(song_ids)

        return _to_resolution(matches)


def _to_resolution(matches: Iterable[str]) -> Resolution:
    candidates = tuple(sorted(set(matches)))
    if not candidates:
        return Resolution(kind=ResolutionKind.NOT_FOUND)
    if len(candidates) == 1:
        return Resolution(kind=ResolutionKind.UNIQUE, song_id=candidates[0])
    return Resolution(kind=ResolutionKind.AMBIGUOUS, candidates=candidates)


def _read_csv_rows(path: str, required: Iterable[str]) -> List[Tuple[int, Dict[str, str]]]:
    """CSV を読み込み、(行番号, 行辞書) のリストを返す。"""
    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as file_obj:
            reader = csv.DictReader(file_obj)
            fieldnames = [name.strip() for name in (reader.fieldnames or [])]
            missing = [col for col in required if col not in fieldnames]
            if missing:
                raise CatalogLoadError(f"{path}: 必須列がありません: {missing}")
            rows = []
            for row in reader:
                cleaned = {
                    (k or "").strip(): (v or "").strip() if isinstance(v, str) else v
                    for k, v in row.items()
                }
                if None in row:
                    raise CatalogLoadError(f"{path}:{reader.line_num}: 列数がヘッダより多い行です")
                rows.append((reader.line_num, cleaned))
            return rows
    except csv.Error as e:
        raise CatalogLoadError(f"{path}: CSV のパースに失敗しました: {e}") from e
    except UnicodeDecodeError as e:
        raise CatalogLoadError(f"{path}: UTF-8 として読めません: {e}") from e


def _parse_constant(text: str, path: str, line: int, column: str) -> Optional[float]:
    if text is None or text == "":
        return None
    try:
        value = float(text)
    except ValueError as e:
        raise CatalogLoadError(f"{path}:{line}: {column} が数値ではありません: {text!r}") from e
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise CatalogLoadError(f"{path}:{line}: {column} が不正な定数です: {text!r}")
    return value


def _load_info(path: str) -> Dict[str, Dict[str, object]]:
    songs: Dict[str, Dict[str, object]] = {}
    for line, row in _read_csv_rows(path, INFO_REQUIRED_COLUMNS):
        song_id = row.get("id") or ""
        if not song_id:
            raise CatalogLoadError(f"{path}:{line}: id が空です")
        if not row.get("song"):
            raise CatalogLoadError(f"{path}:{line}: song が空です ({song_id})")
        if song_id in songs:
            raise CatalogLoadError(f"{path}:{line}: 楽曲IDが重複しています: {song_id}")
        charters = {d: row[d.value] for d in Difficulty if row.get(d.value)}
        songs[song_id] = {
            "name": row["song"],
            "composer": row.get("composer") or "",
            "illustrator": row.get("illustrator") or None,
            "charters": charters,
        }
    return songs


def _load_constants(path: str, song_ids: Set[str]) -> Dict[Tuple[str, Difficulty], float]:
    constants: Dict[Tuple[str, Difficulty], float] = {}
    seen: Set[str] = set()
    for line, row in _read_csv_rows(path, ("id",)):
        song_id = row.get("id") or ""
        if not song_id:
            raise CatalogLoadError(f"{path}:{line}: id が空です")
        if song_id in seen:
            raise CatalogLoadError(f"{path}:{line}: 楽曲IDが重複しています: {song_id}")
        seen.add(song_id)
        if song_id not in song_ids:
            raise CatalogLoadError(f"{path}:{line}: 楽曲情報に存在しない楽曲IDです: {song_id}")

        for difficulty in Difficulty:
            value = _parse_constant(row.get(difficulty.value), path, line, difficulty.value)
            if value is not None:
                constants[(song_id, difficulty)] = value
    return constants


def _load_aliases(path: str, songs: Mapping[str, Dict[str, object]]) -> Dict[str, Set[str]]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise CatalogLoadError(f"{path}: YAML のパースに失敗しました: {e}") from e

    if not isinstance(data, dict):
        raise CatalogLoadError(f"{path}: トップレベルはマッピングである必要があります")

    by_name: Dict[str, List[str]] = {}
    for song_id, song in songs.items():
        by_name.setdefault(str(song["name"]), []).append(song_id)

    aliases: Dict[str, Set[str]] = {}
    for key, values in data.items():
        key = str(key)
        if key in songs:
            song_id = key
        elif len(by_name.get(key, [])) == 1:
            song_id = by_name[key][0]
        else:
            raise CatalogLoadError(f"{path}: 別名のキーが楽曲を一意に指していません: {key}")

        if isinstance(values, str):
            values = [values]
        if not isinstance(values, list) or not all(isinstance(v, (str, int, float)) for v in values):
            raise CatalogLoadError(f"{path}: {key} の別名はリストである必要があります")
        aliases.setdefault(song_id, set()).update(str(v).strip() for v in values if str(v).strip())
    return aliases


def load_catalog(sources: CatalogSources) -> Catalog:
    """
    3つのソースを読み込み Catalog を構築する。

    Args:
        sources: ソースファイルのパス。

    Returns:
        構築済みの Catalog。

    Raises:
        CatalogLoadError: ソース欠落・不正行・キー重複・参照不整合がある場合。
    """
    for path in sources.paths():
        if not os.path.isfile(path):
            raise CatalogLoadError(f"カタログのソースが見つかりません: {path}")

    raw_songs = _load_info(sources.info_path)
    constants = _load_constants(sources.difficulty_path, set(raw_songs))
    aliases = _load_aliases(sources.nicklist_path, raw_songs)

    songs = {
        song_id: SongInfo(
            song_id=song_id,
            name=str(raw["name"]),
            composer=str(raw["composer"]),
            illustrator=raw["illustrator"],
            charters=dict(raw["charters"]),
            aliases=frozenset(aliases.get(song_id, ())),
        )
        for song_id, raw in raw_songs.items()
    }

    catalog = Catalog(songs, constants)
    logger.info("catalog loaded: %d songs, %d charts, %d aliased songs", len(songs), len(catalog), len(aliases))
    return catalog


class CatalogStore:
    """
    現在のカタログスナップショットを保持するハンドル。

    読み取りはロック無しで current を参照する。reload は新しい
    スナップショットを完全に構築してから参照を差し替えるため、
    処理中のリクエストが構築途中の状態を見ることはない。
    """

    def __init__(self, sources: CatalogSources, catalog: Optional[Catalog] = None):
        self._sources = sources
        self._lock = threading.Lock()
        self._catalog = catalog if catalog is not None else load_catalog(sources)

    @property
    def current(self) -> Catalog:
        return self._catalog

    @property
    def sources(self) -> CatalogSources:
        return self._sources

    def reload(self, sources: Optional[CatalogSources] = None) -> Catalog:
        """
        ソースを読み直してスナップショットを差し替える。

        読み込みに失敗した場合は既存のスナップショットを維持したまま例外を送出する。
        """
        with self._lock:
            target = sources or self._sources
            catalog = load_catalog(target)
            self._sources = target
            self._catalog = catalog
        logger.info("catalog reloaded from %s", os.path.dirname(target.info_path) or ".")
        return catalog
