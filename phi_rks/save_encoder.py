"""
存档メンバーのエンコード処理。

save_decoder の逆変換。ゴールデン存档の作成や往復検証に使う。
"""

from __future__ import annotations

from typing import Dict, Mapping

from phi_rks.binary_reader import BinaryWriter
from phi_rks.models import DecodedSave, Difficulty, RawScore, SaveMember


def encode_game_record(records: Mapping[str, Mapping[Difficulty, RawScore]]) -> bytes:
    writer = BinaryWriter()
    writer.write_varint(len(records))

    for song_id, charts in records.items():
        block = BinaryWriter()
        unlock = 0
        fc_flags = 0
        for difficulty in charts:
            unlock |= 1 << difficulty.bit_index
            if charts[difficulty].full_combo:
                fc_flags |= 1 << difficulty.bit_index
        block.write_byte(unlock)
        block.write_byte(fc_flags)
        for difficulty in sorted(charts, key=lambda d: d.bit_index):
            block.write_u32(charts[difficulty].score)
            block.write_f32(charts[difficulty].accuracy)

        body = block.getvalue()
        writer.write_string(f"{song_id}.0")
        writer.write_varint(len(body))
        writer.reset_bits()
        for byte in body:
            writer.write_byte(byte)

    return writer.getvalue()


def encode_game_progress(progress: Mapping[str, object], version: int = 4) -> bytes:
    writer = BinaryWriter()
    writer.write_bit(progress["isFirstRun"])
    writer.write_bit(progress["legacyChapterFinished"])
    writer.write_bit(progress["alreadyShowCollectionTip"])
    writer.write_bit(progress["alreadyShowAutoUnlockINTip"])
    writer.write_string(progress["completed"])
    writer.write_varint(progress["songUpdateInfo"])
    writer.write_u16(progress["challengeModeRank"])
    for value in progress["money"]:
        writer.write_varint(value)
    writer.write_bits(progress["unlockFlagOfSpasmodic"])
    writer.write_bits(progress["unlockFlagOfIgallta"])
    writer.write_bits(progress["unlockFlagOfRrharil"])
    writer.write_bits(progress["flagOfSongRecordKey"])
    writer.write_bits(progress["randomVersionUnlocked"])
    writer.write_bit(progress["chapter8UnlockBegin"])
    writer.write_bit(progress["chapter8UnlockSecondPhase"])
    writer.write_bit(progress["chapter8Passed"])
    writer.write_bits(progress["chapter8SongUnlocked"])
    if version >= 4:
        writer.write_bits(progress["flagOfSongRecordKeyTakumi"])
    return writer.getvalue()


def encode_settings(settings: Mapping[str, object]) -> bytes:
    writer = BinaryWriter()
    writer.write_bit(settings["chordSupport"])
    writer.write_bit(settings["fcAPIndicator"])
    writer.write_bit(settings["enableHitSound"])
    writer.write_bit(settings["lowResolutionMode"])
    writer.write_string(settings["deviceName"])
    for key in ("bright", "musicVolume", "effectVolume", "hitSoundVolume", "soundOffset", "noteScale"):
        writer.write_f32(settings[key])
    return writer.getvalue()


def encode_user(user: Mapping[str, object]) -> bytes:
    writer = BinaryWriter()
    writer.write_byte(user["showPlayerId"])
    writer.write_string(user["selfIntro"])
    writer.write_string(user["avatar"])
    writer.write_string(user["background"])
    return writer.getvalue()


def encode_game_key(game_key: Mapping[str, object], version: int = 3) -> bytes:
    writer = BinaryWriter()
    key_list = game_key["keyList"]
    writer.write_varint(len(key_list))
    for name, entry in key_list.items():
        writer.write_string(name)
        writer.write_byte(len(entry["flag"]) + 1)
        writer.write_bits(entry["type"])
        for flag in entry["flag"]:
            writer.write_byte(flag)
    writer.write_bits(game_key["lanotaReadKeys"])
    writer.write_bits(game_key["camelliaReadKey"])
    if version >= 3:
        writer.write_byte(game_key["sideStory4BeginReadKey"])
        writer.write_byte(game_key["oldScoreClearedV390"])
    return writer.getvalue()


def encode_save(save: DecodedSave) -> Dict[str, SaveMember]:
    """
    DecodedSave を最新バージョンのメンバー群へ変換する。

    空のセクション(progress 等)はメンバーを出力しない。gameRecord は常に出力する。
    """
    members = {
        "gameRecord": SaveMember("gameRecord", 1, encode_game_record(save.game_record)),
    }
    if save.progress:
        members["gameProgress"] = SaveMember("gameProgress", 4, encode_game_progress(save.progress))
    if save.settings:
        members["settings"] = SaveMember("settings", 1, encode_settings(save.settings))
    if save.user:
        members["user"] = SaveMember("user", 1, encode_user(save.user))
    if save.game_key:
        members["gameKey"] = SaveMember("gameKey", 3, encode_game_key(save.game_key))
    return members
