"""
設定ファイル(settings.yaml)の読み込み処理を提供するモジュール。

settings.yaml から存档復号・難易度カタログ・推分ACCキャッシュに必要な
各種設定を読み込み、アプリ内で扱いやすい dataclass に変換する。
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field

import yaml

from phi_rks.errors import ConfigError

# ゲームクライアントに埋め込まれている公開済みの鍵素材
DEFAULT_AES_KEY_BASE64 = "6Jaa0qVAJZuXkZCLiOa/Ax5tIZVu+taKUN1V1nqwkks="
DEFAULT_AES_IV_BASE64 = "Kk/wisgNYwcAV8WVGMgyUw=="


@dataclass(frozen=True)
class CatalogConfig:
    """
    難易度カタログのソース設定。

    Attributes:
        data_dir: ソースファイルを置くディレクトリ。
        difficulty_file: 定数表(CSV)のファイル名。
        info_file: 楽曲情報(CSV)のファイル名。
        nicklist_file: 別名リスト(YAML)のファイル名。
        source_base_url: ソースを取得するベースURL。空なら取得しない。
    """

    data_dir: str = "info"
    difficulty_file: str = "difficulty.csv"
    info_file: str = "info.csv"
    nicklist_file: str = "nicklist.yaml"
    source_base_url: str = ""


@dataclass(frozen=True)
class CryptoConfig:
    """
    存档メンバー復号用の AES 鍵設定。

    Attributes:
        aes_key_base64: AES-256 鍵(32バイト)の base64 表現。
        aes_iv_base64: CBC の IV(16バイト)の base64 表現。
    """

    aes_key_base64: str = DEFAULT_AES_KEY_BASE64
    aes_iv_base64: str = DEFAULT_AES_IV_BASE64

    @property
    def key(self) -> bytes:
        return _decode_key_material(self.aes_key_base64, 32, "aes_key_base64")

    @property
    def iv(self) -> bytes:
        return _decode_key_material(self.aes_iv_base64, 16, "aes_iv_base64")


@dataclass(frozen=True)
class PushAccConfig:
    """
    推分ACC予測とキャッシュの設定。

    Attributes:
        cache_db_path: キャッシュ用SQLiteファイルパス。
        cooldown_seconds: 同一ACCで再計算を抑止する秒数。
        best_n: 推分対象とする BestN の N。
        candidate_limit: カットライン直下から検査する譜面数。
    """

    cache_db_path: str = "push_acc_cache.sqlite"
    cooldown_seconds: int = 300
    best_n: int = 30
    candidate_limit: int = 10


@dataclass(frozen=True)
class Settings:
    """
    アプリケーション全体設定。

    Attributes:
        catalog: 難易度カタログ設定。
        crypto: 復号鍵設定。
        push_acc: 推分ACC設定。
    """

    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    crypto: CryptoConfig = field(default_factory=CryptoConfig)
    push_acc: PushAccConfig = field(default_factory=PushAccConfig)


def _decode_key_material(value: str, size: int, name: str) -> bytes:
    """base64 の鍵素材をデコードし、長さを検証する。"""
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigError(f"{name} の base64 デコードに失敗しました: {e}") from e
    if len(raw) != size:
        raise ConfigError(f"{name} は {size} バイトである必要があります (実際: {len(raw)})")
    return raw


def _positive_int(data: dict, key: str, default: int) -> int:
    value = data.get(key, default)
    try:
        value = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} は整数である必要があります: {value!r}") from e
    if value <= 0:
        raise ConfigError(f"{key} は正の整数である必要があります: {value}")
    return value


def load_settings(path: str) -> Settings:
    """
    settings.yaml を読み込み Settings に変換する。

    未記載のキーは各 dataclass の既定値を使う。

    Args:
        path: settings.yaml のファイルパス。

    Returns:
        Settingsオブジェクト。

    Raises:
        FileNotFoundError: 設定ファイルが存在しない場合。
        yaml.YAMLError: YAMLのパースに失敗した場合。
        ConfigError: 値の型や範囲が不正な場合。
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigError("settings.yaml のトップレベルはマッピングである必要があります")

    catalog_data = data.get("catalog") or {}
    crypto_data = data.get("crypto") or {}
    push_data = data.get("push_acc") or {}

    defaults = CatalogConfig()
    crypto = CryptoConfig(
        aes_key_base64=str(crypto_data.get("aes_key_base64", DEFAULT_AES_KEY_BASE64)).strip(),
        aes_iv_base64=str(crypto_data.get("aes_iv_base64", DEFAULT_AES_IV_BASE64)).strip(),
    )
    # 鍵長の検証は起動時に済ませる
    _ = crypto.key, crypto.iv

    return Settings(
        catalog=CatalogConfig(
            data_dir=str(catalog_data.get("data_dir", defaults.data_dir)),
            difficulty_file=str(catalog_data.get("difficulty_file", defaults.difficulty_file)),
            info_file=str(catalog_data.get("info_file", defaults.info_file)),
            nicklist_file=str(catalog_data.get("nicklist_file", defaults.nicklist_file)),
            source_base_url=str(catalog_data.get("source_base_url", "") or "").strip(),
        ),
        crypto=crypto,
        push_acc=PushAccConfig(
            cache_db_path=str(push_data.get("cache_db_path", "push_acc_cache.sqlite")),
            cooldown_seconds=_positive_int(push_data, "cooldown_seconds", 300),
            best_n=_positive_int(push_data, "best_n", 30),
            candidate_limit=_positive_int(push_data, "candidate_limit", 10),
        ),
    )
