"""
存档メンバーのデコード処理。

復号済みの各メンバー(gameRecord / gameProgress / settings / user / gameKey)を
バージョンごとのレイアウトに従って読み取り、DecodedSave へ変換する。

想定仕様:
- 既知のメンバーで未知のバージョンは UnsupportedVersionError とし、推測で読まない
- 読み取り後に未読バイトが残る場合は MalformedRecordError
- 正規化やレーティング計算は一切行わない(構造をそのまま写し取る)
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Mapping, Tuple

from phi_rks.binary_reader import BinaryReader
from phi_rks.errors import MalformedRecordError, UnsupportedVersionError
from phi_rks.models import DecodedSave, Difficulty, RawScore, SaveMember
from phi_rks.normalize import strip_record_suffix

logger = logging.getLogger(__name__)

_DIFFICULTY_BITS = 4
_VALID_BIT_MASK = (1 << _DIFFICULTY_BITS) - 1


def parse_game_record(reader: BinaryReader) -> Dict[str, Dict[Difficulty, RawScore]]:
    """
    gameRecord(v1) を読み取る。

    1曲ごとのブロック構成:
    - 成績キー文字列("楽曲ID.0")
    - ブロック長(可変長整数)
    - 解禁ビット列(1バイト、bit i が難易度 i の記録有無)
    - FC ビット列(1バイト)
    - 解禁ビットが立っている難易度ごとに u32 スコア + f32 ACC

    Raises:
        MalformedRecordError: 難易度ビットが範囲外、ブロック長不一致、キー重複の場合。
        TruncatedDataError: データ末尾を越えて読み取ろうとした場合。
    """
    records: Dict[str, Dict[Difficulty, RawScore]] = {}
    song_count = reader.read_varint()

    for _ in range(song_count):
        song_id = strip_record_suffix(reader.read_string())
        block_length = reader.read_varint()
        block_start = reader.position

        unlock = reader.read_byte()
        fc_flags = reader.read_byte()
        if unlock & ~_VALID_BIT_MASK or fc_flags & ~_VALID_BIT_MASK:
            raise MalformedRecordError(
                f"{song_id}: difficulty bits out of range (unlock={unlock:#04x}, fc={fc_flags:#04x})"
            )

        charts: Dict[Difficulty, RawScore] = {}
        for index in range(_DIFFICULTY_BITS):
            if not (unlock >> index) & 1:
                continue
            score = reader.read_u32()
            accuracy = reader.read_f32()
            charts[Difficulty.from_bit_index(index)] = RawScore(
                score=score,
                accuracy=accuracy,
                full_combo=bool((fc_flags >> index) & 1),
            )

        consumed = reader.position - block_start
        if consumed != block_length:
            raise MalformedRecordError(
                f"{song_id}: block length {block_length} does not match {consumed} bytes read"
            )
        if song_id in records:
            raise MalformedRecordError(f"duplicate record key: {song_id}")
        records[song_id] = charts

    return records


def _parse_game_progress_v3(reader: BinaryReader) -> Dict[str, object]:
    progress: Dict[str, object] = {}
    progress["isFirstRun"] = reader.read_bit()
    progress["legacyChapterFinished"] = reader.read_bit()
    progress["alreadyShowCollectionTip"] = reader.read_bit()
    progress["alreadyShowAutoUnlockINTip"] = reader.read_bit()
    progress["completed"] = reader.read_string()
    progress["songUpdateInfo"] = reader.read_varint()
    progress["challengeModeRank"] = reader.read_u16()
    progress["money"] = [reader.read_varint() for _ in range(5)]
    progress["unlockFlagOfSpasmodic"] = reader.read_bits(4)
    progress["unlockFlagOfIgallta"] = reader.read_bits(4)
    progress["unlockFlagOfRrharil"] = reader.read_bits(4)
    progress["flagOfSongRecordKey"] = reader.read_bits(8)
    progress["randomVersionUnlocked"] = reader.read_bits(6)
    progress["chapter8UnlockBegin"] = reader.read_bit()
    progress["chapter8UnlockSecondPhase"] = reader.read_bit()
    progress["chapter8Passed"] = reader.read_bit()
    progress["chapter8SongUnlocked"] = reader.read_bits(6)
    return progress


def _parse_game_progress_v4(reader: BinaryReader) -> Dict[str, object]:
    progress = _parse_game_progress_v3(reader)
    progress["flagOfSongRecordKeyTakumi"] = reader.read_bits(3)
    return progress


def _parse_settings_v1(reader: BinaryReader) -> Dict[str, object]:
    settings: Dict[str, object] = {}
    settings["chordSupport"] = reader.read_bit()
    settings["fcAPIndicator"] = reader.read_bit()
    settings["enableHitSound"] = reader.read_bit()
    settings["lowResolutionMode"] = reader.read_bit()
    settings["deviceName"] = reader.read_string()
    for key in ("bright", "musicVolume", "effectVolume", "hitSoundVolume", "soundOffset", "noteScale"):
        settings[key] = reader.read_f32()
    return settings


def _parse_user_v1(reader: BinaryReader) -> Dict[str, object]:
    return {
        "showPlayerId": reader.read_byte(),
        "selfIntro": reader.read_string(),
        "avatar": reader.read_string(),
        "background": reader.read_string(),
    }


def _parse_game_key_v2(reader: BinaryReader) -> Dict[str, object]:
    key_list: Dict[str, object] = {}
    for _ in range(reader.read_varint()):
        name = reader.read_string()
        length = reader.read_byte()
        if length == 0:
            raise MalformedRecordError(f"gameKey {name}: zero-length entry")
        entry_type = reader.read_bits(5)
        flags = [reader.read_byte() for _ in range(length - 1)]
        key_list[name] = {"type": entry_type, "flag": flags}
    return {
        "keyList": key_list,
        "lanotaReadKeys": reader.read_bits(6),
        "camelliaReadKey": reader.read_bits(8),
    }


def _parse_game_key_v3(reader: BinaryReader) -> Dict[str, object]:
    game_key = _parse_game_key_v2(reader)
    game_key["sideStory4BeginReadKey"] = reader.read_byte()
    game_key["oldScoreClearedV390"] = reader.read_byte()
    return game_key


# (メンバー名, バージョン) -> (DecodedSave のフィールド名, パーサ)
MEMBER_LAYOUTS: Dict[Tuple[str, int], Tuple[str, Callable[[BinaryReader], object]]] = {
    ("gameRecord", 1): ("game_record", parse_game_record),
    ("gameProgress", 3): ("progress", _parse_game_progress_v3),
    ("gameProgress", 4): ("progress", _parse_game_progress_v4),
    ("settings", 1): ("settings", _parse_settings_v1),
    ("user", 1): ("user", _parse_user_v1),
    ("gameKey", 2): ("game_key", _parse_game_key_v2),
    ("gameKey", 3): ("game_key", _parse_game_key_v3),
}

_KNOWN_MEMBERS = {name for name, _ in MEMBER_LAYOUTS}


def decode_member(member: SaveMember) -> Tuple[str, object]:
    """
    メンバー1件をデコードし、(DecodedSave のフィールド名, 値) を返す。

    Raises:
        UnsupportedVersionError: 既知のメンバーで未知のバージョンの場合。
        MalformedRecordError: 未知のメンバー名、または未読バイトが残る場合。
        TruncatedDataError: データが途中で切れている場合。
    """
    layout = MEMBER_LAYOUTS.get((member.name, member.version))
    if layout is None:
        if member.name in _KNOWN_MEMBERS:
            raise UnsupportedVersionError(
                f"member {member.name} has unsupported version {member.version}"
            )
        raise MalformedRecordError(f"unknown save member: {member.name}")

    field_name, parser = layout
    reader = BinaryReader(member.payload)
    value = parser(reader)
    if reader.remaining() > 0:
        raise MalformedRecordError(
            f"member {member.name}: {reader.remaining()} trailing bytes after decode"
        )
    return field_name, value


def decode_save(members: Mapping[str, SaveMember]) -> DecodedSave:
    """
    復号済みメンバー群を DecodedSave に変換する。

    未知のメンバー名は警告ログを出して無視する。

    Raises:
        MalformedRecordError: gameRecord が存在しない場合など。
        UnsupportedVersionError / TruncatedDataError: decode_member を参照。
    """
    if "gameRecord" not in members:
        raise MalformedRecordError("save has no gameRecord member")

    fields: Dict[str, object] = {}
    for name in sorted(members):
        if name not in _KNOWN_MEMBERS:
            logger.warning("unknown save member %s ignored", name)
            continue
        field_name, value = decode_member(members[name])
        fields[field_name] = value

    decoded = DecodedSave(**fields)
    logger.info(
        "decoded save: %d songs, %d charts",
        len(decoded.game_record),
        decoded.chart_count(),
    )
    return decoded
