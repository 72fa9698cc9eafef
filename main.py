import argparse
import json
import logging
import os
import sys
import traceback

from phi_rks.catalog import CatalogSources, CatalogStore
from phi_rks.catalog_fetch import sync_catalog_sources
from phi_rks.config import load_settings
from phi_rks.models import Difficulty
from phi_rks.pipeline import (
    PushAccService,
    build_report,
    parse_save_with_ratings,
    rating_push_accs,
    song_records,
)
from phi_rks.push_acc_cache import PushAccCache
from phi_rks.ranking import round_rating


def _record_dict(r) -> dict:
    return {
        "song_id": r.song_id,
        "song_name": r.song_name,
        "difficulty": r.difficulty.value,
        "score": r.score,
        "accuracy": r.accuracy,
        "full_combo": r.full_combo,
        "constant": r.difficulty_constant,
        "rating": r.rating,
    }


def _ranked_dict(ranked) -> dict:
    return {"rank": ranked.rank, **_record_dict(ranked.record)}


def _prediction_dict(p) -> dict:
    return {
        "song_id": p.song_id,
        "difficulty": p.difficulty.value,
        "current_accuracy": p.current_accuracy,
        "target_accuracy": p.target_accuracy,
        "reachable": p.reachable,
    }


def build_output(report, push_checks, rating_push=(), song=None) -> dict:
    """
    集計結果を JSON 出力用の辞書に変換する。

    Args:
        report: PlayerReport。
        push_checks: PushAccCheck のリスト(推分ACCを求めない場合は空)。
        rating_push: 総合レーティング表示値を上げるための PushAccPrediction のリスト。
        song: SongRecords(--song 指定時のみ)。

    Returns:
        JSON シリアライズ可能な辞書。
    """
    output = {
        "overall_rating": report.overall_rating,
        "overall_rating_display": round_rating(report.overall_rating),
        "b30_rating": report.b30.rating,
        "best": [_ranked_dict(r) for r in report.best],
        "phi_best": [_ranked_dict(r) for r in report.b30.phi_best],
        "unrated": [f"{song_id}/{d.value}" for song_id, d in report.unrated],
        "push_acc": [
            {**_prediction_dict(c.prediction), "from_cache": c.from_cache}
            for c in push_checks
        ],
        "rating_push_acc": [_prediction_dict(p) for p in rating_push],
    }
    if song is not None:
        output["song"] = {
            "resolution": song.resolution.kind.value,
            "song_id": song.resolution.song_id,
            "candidates": list(song.resolution.candidates),
            "records": [_record_dict(r) for r in song.records],
        }
    return output


def main(argv=None):
    """
    存档ファイルを読み込み、レーティング集計結果を JSON で標準出力へ書き出す。

    以下の処理を順序実行する:
    1. settings.yaml の読み込み
    2. (--sync 指定時) カタログのソースを取得・更新
    3. 難易度カタログの読み込み
    4. 存档の復号・デコード・レーティング付与・集計
    5. 総合レーティング表示値を 0.01 上げるための推分ACCを算出
    6. (--player-id 指定時) BestN 圏外の推分ACCをキャッシュ経由で算出
    7. (--song 指定時) 楽曲を特定し、その成績を抽出
    環境変数:
    - SETTINGS_PATH: 設定ファイルパス(デフォルト: "settings.yaml")
    - LOG_LEVEL: ログレベル(デフォルト: "INFO")
    Raises:
        Exception: 処理中に任意のエラーが発生した場合。
                   トレースバックは標準エラーへ出力する。
    """
    parser = argparse.ArgumentParser(description="cloud save rating report")
    parser.add_argument("save_path", help="存档ファイル(zip バイナリまたは base64 テキスト)")
    parser.add_argument("--player-id", help="推分ACCを算出するプレイヤーID")
    parser.add_argument("-n", "--best-n", type=int, default=None, help="BestN の N")
    parser.add_argument("--song", help="成績を抽出する楽曲(楽曲ID・楽曲名・別名)")
    parser.add_argument("--difficulty", choices=[d.value for d in Difficulty], help="--song の難易度を絞る")
    parser.add_argument("--fuzzy", action="store_true", help="--song で部分一致も許可する")
    parser.add_argument("--sync", action="store_true", help="カタログのソースを取得してから実行する")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        settings = load_settings(os.environ.get("SETTINGS_PATH", "settings.yaml"))

        if args.sync:
            sync_catalog_sources(settings.catalog)

        store = CatalogStore(CatalogSources.from_config(settings.catalog))

        with open(args.save_path, "rb") as f:
            blob = f.read()

        _, enriched = parse_save_with_ratings(blob, store.current, settings.crypto)
        n = settings.push_acc.best_n if args.best_n is None else args.best_n
        report = build_report(enriched, n)
        rating_push = rating_push_accs(enriched.records, settings.push_acc.candidate_limit)

        push_checks = []
        if args.player_id:
            cache = PushAccCache(settings.push_acc.cache_db_path, settings.push_acc.cooldown_seconds)
            service = PushAccService(cache, settings.push_acc)
            push_checks = service.check_candidates(args.player_id, enriched.records, n=n)

        song = None
        if args.song is not None:
            difficulty = Difficulty(args.difficulty) if args.difficulty else None
            song = song_records(store.current, enriched.records, args.song, difficulty, args.fuzzy)

        output = build_output(report, push_checks, rating_push, song)
        json.dump(output, sys.stdout, ensure_ascii=False, indent=2)
        sys.stdout.write("\n")

    except Exception:
        err = traceback.format_exc()
        print(err, file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
