"""
クラウド存档コンテナの復号処理。

上流から受け取った存档は次の構造になっている:

    (base64 または生バイナリ)
      -> zip アーカイブ (gameRecord / gameProgress / settings / user / gameKey)
        -> 各メンバー: 先頭1バイトのバージョン + AES-256-CBC(PKCS#7) 暗号文

本モジュールはこの入れ子を剥がし、メンバー名 -> SaveMember の対応を返す。
処理は純粋なメモリ上の変換のみで、ファイルやネットワークには触れない。

例外方針:
- base64 テキストの不正・暗号文長不正・パディング不正は DecryptionError
- zip 破損(先頭シグネチャの欠損を含む)・未対応の圧縮方式は DecompressionError
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import zipfile
import zlib
from typing import Dict, Mapping, Optional, Union

from Crypto.Cipher import AES
from Crypto.Util.Padding import pad, unpad

from phi_rks.config import CryptoConfig
from phi_rks.errors import DecompressionError, DecryptionError
from phi_rks.models import SaveMember

logger = logging.getLogger(__name__)

MIN_CONTAINER_SIZE = 31
SAVE_MEMBER_NAMES = ("gameKey", "gameProgress", "gameRecord", "settings", "user")

_ZIP_MAGIC = b"PK\x03\x04"


def coerce_blob(blob: Union[bytes, bytearray, str]) -> bytes:
    """
    入力を生バイト列に揃える。

    - str は base64 とみなしてデコードする
    - bytes は zip シグネチャで始まればそのまま、base64 として読めればデコード結果、
      どちらでもなければそのまま返す(zip として壊れていれば展開時に失敗する)

    Raises:
        DecryptionError: str 入力が base64 として解釈できない場合。
    """
    if isinstance(blob, str):
        try:
            return base64.b64decode(blob.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"base64 decode failed: {e}") from e

    raw = bytes(blob)
    if raw.startswith(_ZIP_MAGIC):
        return raw
    try:
        return base64.b64decode(raw.decode("ascii").strip(), validate=True)
    except (UnicodeDecodeError, binascii.Error, ValueError):
        logger.debug("save blob is not base64 text, treated as raw archive bytes")
        return raw


def unzip_container(data: bytes) -> Dict[str, bytes]:
    """
    zip コンテナを展開し、メンバー名 -> バイト列 を返す。

    Raises:
        DecompressionError: サイズ不足・zip 破損・CRC 不一致・未対応の圧縮方式の場合。
    """
    if len(data) < MIN_CONTAINER_SIZE:
        raise DecompressionError(f"save container too small: {len(data)} bytes")

    members: Dict[str, bytes] = {}
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                members[info.filename] = archive.read(info)
    except NotImplementedError as e:
        raise DecompressionError(f"unsupported compression method: {e}") from e
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        raise DecompressionError(f"corrupt save archive: {e}") from e

    if not members:
        raise DecompressionError("save archive has no members")
    return members


def decrypt_member_payload(ciphertext: bytes, crypto: CryptoConfig) -> bytes:
    """
    メンバー本体(バージョンバイトを除いた部分)を復号する。

    Raises:
        DecryptionError: 暗号文長が16の倍数でない、またはパディングが不正な場合。
    """
    if not ciphertext or len(ciphertext) % AES.block_size != 0:
        raise DecryptionError(
            f"ciphertext length {len(ciphertext)} is not a positive multiple of {AES.block_size}"
        )
    cipher = AES.new(crypto.key, AES.MODE_CBC, iv=crypto.iv)
    try:
        return unpad(cipher.decrypt(ciphertext), AES.block_size, style="pkcs7")
    except ValueError as e:
        raise DecryptionError(f"invalid PKCS#7 padding: {e}") from e


def decrypt_save(blob: Union[bytes, bytearray, str], crypto: Optional[CryptoConfig] = None) -> Dict[str, SaveMember]:
    """
    存档 blob を復号し、メンバー名 -> SaveMember を返す。

    空のメンバーは警告ログを出してスキップする。

    Args:
        blob: 上流から受け取った存档(生バイナリまたは base64)。
        crypto: 復号鍵設定。省略時はゲーム既定の鍵素材。

    Returns:
        メンバー名 -> SaveMember の辞書。

    Raises:
        DecryptionError: 復号に失敗した場合。
        DecompressionError: コンテナの展開に失敗した場合。
    """
    crypto = crypto or CryptoConfig()
    container = unzip_container(coerce_blob(blob))

    result: Dict[str, SaveMember] = {}
    for name, data in container.items():
        if not data:
            logger.warning("save member %s is empty, skipped", name)
            continue
        try:
            payload = decrypt_member_payload(data[1:], crypto)
        except DecryptionError as e:
            raise DecryptionError(f"member {name}: {e}") from e
        logger.debug("decrypted member %s (version=%d, %d bytes)", name, data[0], len(payload))
        result[name] = SaveMember(name=name, version=data[0], payload=payload)
    return result


def encrypt_member_payload(plaintext: bytes, crypto: CryptoConfig) -> bytes:
    cipher = AES.new(crypto.key, AES.MODE_CBC, iv=crypto.iv)
    return cipher.encrypt(pad(plaintext, AES.block_size, style="pkcs7"))


def build_save_blob(members: Mapping[str, SaveMember], crypto: Optional[CryptoConfig] = None) -> bytes:
    """
    SaveMember 群から存档 zip を組み立てる。decrypt_save の逆変換。

    テスト用のゴールデン存档の生成に使う。
    """
    crypto = crypto or CryptoConfig()
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, member in members.items():
            body = bytes([member.version]) + encrypt_member_payload(member.payload, crypto)
            archive.writestr(name, body)
    return buf.getvalue()
