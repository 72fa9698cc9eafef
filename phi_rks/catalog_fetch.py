"""カタログのソースファイルを取得し、ソースハッシュ付きのマニフェストを管理する。"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from datetime import datetime, timezone

import requests

from phi_rks.config import CatalogConfig
from phi_rks.errors import CatalogFetchError

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "sources.json"


def _sha256_hex(data: bytes) -> str:
    """バイナリデータの SHA-256（16進）を返す。"""
    return hashlib.sha256(data).hexdigest()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def fetch_source(url: str, timeout: int = 30) -> bytes:
    """
    指定URLへHTTP GETを行い、レスポンス本文を返す。

    Raises:
        CatalogFetchError: HTTPエラーや通信失敗が発生した場合。
    """
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        return response.content
    except requests.RequestException as e:
        raise CatalogFetchError(f"HTTP fetch failed: {url} ({e})") from e


def fetch_catalog_sources(config: CatalogConfig) -> dict[str, bytes]:
    """
    source_base_url から3つのソースを取得し、ファイル名 -> 本文 を返す。

    Raises:
        CatalogFetchError: source_base_url が未設定、または取得に失敗した場合。
    """
    if not config.source_base_url:
        raise CatalogFetchError("catalog.source_base_url が未設定です")

    base = config.source_base_url.rstrip("/")
    contents = {}
    for file_name in (config.difficulty_file, config.info_file, config.nicklist_file):
        contents[file_name] = fetch_source(f"{base}/{file_name}")
    return contents


def source_hashes(contents: dict[str, bytes]) -> dict[str, str]:
    return {name: _sha256_hex(data) for name, data in contents.items()}


def has_same_source_hashes(previous: dict[str, str] | None, current: dict[str, str]) -> bool:
    """
    前回マニフェストのソースハッシュと今回のハッシュが全て一致するか判定する。

    前回にキーが欠けている場合は不一致とみなす。
    """
    if not previous:
        return False
    return all(previous.get(name) == digest for name, digest in current.items())


def read_manifest(data_dir: str) -> dict | None:
    path = os.path.join(data_dir, MANIFEST_FILE_NAME)
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as file_obj:
        return json.load(file_obj)


def write_manifest(data_dir: str, hashes: dict[str, str]) -> dict:
    manifest = {
        "generated_at": utc_now_iso(),
        "source_hashes": hashes,
    }
    os.makedirs(data_dir or ".", exist_ok=True)
    with open(os.path.join(data_dir, MANIFEST_FILE_NAME), "w", encoding="utf-8") as file_obj:
        json.dump(manifest, file_obj, ensure_ascii=False, indent=2)
        file_obj.write("\n")
    return manifest


def sync_catalog_sources(config: CatalogConfig) -> bool:
    """
    ソースを取得し、前回と内容が変わっていればファイルを書き換える。

    書き込みは一時ファイルへ書いてから置き換えるため、
    読み込み中のプロセスが書きかけのファイルを見ることはない。

    Returns:
        ファイルを更新した場合は True、ハッシュが一致してスキップした場合は False。
    """
    contents = fetch_catalog_sources(config)
    hashes = source_hashes(contents)

    manifest = read_manifest(config.data_dir)
    previous = manifest.get("source_hashes") if manifest else None
    if has_same_source_hashes(previous, hashes):
        logger.info("catalog sources unchanged, skip update")
        return False

    os.makedirs(config.data_dir or ".", exist_ok=True)
    for file_name, data in contents.items():
        path = os.path.join(config.data_dir, file_name)
        tmp_path = path + ".tmp"
        with open(tmp_path, "wb") as file_obj:
            file_obj.write(data)
        os.replace(tmp_path, path)

    write_manifest(config.data_dir, hashes)
    logger.info("catalog sources updated in %s", config.data_dir)
    return True
