"""
推分ACCキャッシュの SQLite 永続化。

(player_id, song_id, difficulty) ごとに最後に検査した ACC と時刻、
そのとき算出した予測結果を1行だけ保持する。

処理方針:
- 読み取りから書き込みまでを1つの BEGIN IMMEDIATE トランザクションで行い、
  同じキーに対する同時検査が両方とも「古い」と判断して競合することを防ぐ
- ACC が前回と同じで、かつクールダウン内であれば再計算も書き込みも行わない
- 書き込みは主キーに対する INSERT ... ON CONFLICT DO UPDATE の1文で行う
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from phi_rks.models import Difficulty, EnrichedRecord, PushAccCacheEntry, PushAccPrediction

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """UTC の ISO 8601 文字列へ変換する。naive な datetime は UTC とみなす。"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_iso(text: str) -> datetime:
    value = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def connect_db(path: str, timeout: float = 30.0) -> sqlite3.Connection:
    """
    SQLite DBへ接続する。

    トランザクションは明示的に BEGIN/COMMIT で管理するため自動開始は無効にする。

    Args:
        path: SQLiteファイルパス。
        timeout: 書き込みロック待ちの秒数。

    Returns:
        sqlite3.Connectionオブジェクト。
    """
    con = sqlite3.connect(path, timeout=timeout, isolation_level=None)
    con.row_factory = sqlite3.Row
    return con


def init_schema(con: sqlite3.Connection) -> None:
    """
    push_acc_cache テーブルが存在しない場合に作成する。

    Args:
        con: SQLite接続。
    """
    con.execute("""
    CREATE TABLE IF NOT EXISTS push_acc_cache (
        player_id TEXT NOT NULL,
        song_id TEXT NOT NULL,
        difficulty TEXT NOT NULL,
        last_checked_acc REAL NOT NULL,
        last_check_time TEXT NOT NULL,
        target_acc REAL NULL,
        reachable INTEGER NOT NULL,
        PRIMARY KEY (player_id, song_id, difficulty)
    )
    """)
    con.execute(
        "CREATE INDEX IF NOT EXISTS idx_push_acc_cache_player_id ON push_acc_cache (player_id)"
    )


def _row_to_entry(row: sqlite3.Row) -> PushAccCacheEntry:
    return PushAccCacheEntry(
        player_id=row["player_id"],
        song_id=row["song_id"],
        difficulty=Difficulty(row["difficulty"]),
        last_checked_accuracy=float(row["last_checked_acc"]),
        last_check_time=row["last_check_time"],
        target_accuracy=None if row["target_acc"] is None else float(row["target_acc"]),
        reachable=bool(row["reachable"]),
    )


def _entry_to_prediction(entry: PushAccCacheEntry) -> PushAccPrediction:
    return PushAccPrediction(
        song_id=entry.song_id,
        difficulty=entry.difficulty,
        current_accuracy=entry.last_checked_accuracy,
        target_accuracy=entry.target_accuracy,
        reachable=entry.reachable,
    )


@dataclass(frozen=True)
class PushAccCheck:
    """キャッシュ経由の検査結果。from_cache が True なら再計算していない。"""

    prediction: PushAccPrediction
    from_cache: bool


class PushAccCache:
    """
    推分ACCキャッシュ。

    接続は操作ごとに開閉するため、スレッド間でインスタンスを共有してよい。
    """

    def __init__(self, db_path: str, cooldown_seconds: int, timeout: float = 30.0):
        self.db_path = db_path
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self.timeout = timeout
        con = connect_db(db_path, timeout)
        try:
            init_schema(con)
        finally:
            con.close()

    def get(self, player_id: str, song_id: str, difficulty: Difficulty) -> Optional[PushAccCacheEntry]:
        con = connect_db(self.db_path, self.timeout)
        try:
            row = con.execute(
                """
                SELECT * FROM push_acc_cache
                WHERE player_id=? AND song_id=? AND difficulty=?
                """,
                (player_id, song_id, difficulty.value),
            ).fetchone()
            return None if row is None else _row_to_entry(row)
        finally:
            con.close()

    def is_fresh(self, entry: PushAccCacheEntry, accuracy: float, now: datetime) -> bool:
        """ACC が同じで、前回検査からクールダウン内であれば True。"""
        if entry.last_checked_accuracy != accuracy:
            return False
        elapsed = now - from_iso(entry.last_check_time)
        return timedelta(0) <= elapsed < self.cooldown

    def check(
        self,
        player_id: str,
        candidate: EnrichedRecord,
        compute: Callable[[], PushAccPrediction],
        now: Optional[datetime] = None,
    ) -> PushAccCheck:
        """
        キャッシュを確認し、必要な場合のみ compute を呼んで結果を保存する。

        Args:
            player_id: プレイヤーID。
            candidate: 検査対象の譜面の現在の成績。
            compute: 予測を計算する関数(キャッシュが古い場合のみ呼ばれる)。
            now: 判定に使う現在時刻。省略時は現在のUTC時刻。

        Returns:
            PushAccCheck。
        """
        now = now or now_utc()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        key = (player_id, candidate.song_id, candidate.difficulty.value)

        con = connect_db(self.db_path, self.timeout)
        try:
            con.execute("BEGIN IMMEDIATE")
            row = con.execute(
                """
                SELECT * FROM push_acc_cache
                WHERE player_id=? AND song_id=? AND difficulty=?
                """,
                key,
            ).fetchone()

            if row is not None:
                entry = _row_to_entry(row)
                if self.is_fresh(entry, candidate.accuracy, now):
                    con.execute("COMMIT")
                    logger.debug("push acc cache hit: %s/%s/%s", *key)
                    return PushAccCheck(prediction=_entry_to_prediction(entry), from_cache=True)

            prediction = compute()
            con.execute(
                """
                INSERT INTO push_acc_cache (
                    player_id, song_id, difficulty,
                    last_checked_acc, last_check_time, target_acc, reachable
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(player_id, song_id, difficulty) DO UPDATE SET
                    last_checked_acc=excluded.last_checked_acc,
                    last_check_time=excluded.last_check_time,
                    target_acc=excluded.target_acc,
                    reachable=excluded.reachable
                """,
                key + (
                    candidate.accuracy,
                    to_iso(now),
                    prediction.target_accuracy,
                    int(prediction.reachable),
                ),
            )
            con.execute("COMMIT")
            logger.debug("push acc cache updated: %s/%s/%s", *key)
            return PushAccCheck(prediction=prediction, from_cache=False)
        except Exception:
            if con.in_transaction:
                con.execute("ROLLBACK")
            raise
        finally:
            con.close()

    def delete_player(self, player_id: str) -> int:
        """プレイヤーのキャッシュ行を全て削除し、削除件数を返す。"""
        con = connect_db(self.db_path, self.timeout)
        try:
            cur = con.execute("DELETE FROM push_acc_cache WHERE player_id=?", (player_id,))
            return cur.rowcount
        finally:
            con.close()
