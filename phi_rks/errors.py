"""
アプリケーション固有の例外定義モジュール。

存档の復号・デコード、難易度カタログの読み込み、レーティング計算などで
発生する例外を種別ごとに分類して扱うため、基底例外および派生例外を定義する。

呼び出し側(トランスポート層)はこの種別だけを見て
「セッション無効」「存档破損」「未対応バージョン」などを区別できる。
"""


class PhiRksError(Exception):
    """レーティング計算システム全体の基底例外。"""


class ConfigError(PhiRksError):
    """settings.yaml の内容が不正な場合の例外。"""


class SaveError(PhiRksError):
    """存档の処理に起因する例外。"""


class DecryptionError(SaveError):
    """暗号文の長さ不正・パディング不正など、復号に失敗した場合の例外。"""


class DecompressionError(SaveError):
    """アーカイブが破損している、または圧縮方式に対応していない場合の例外。"""


class SaveFormatError(SaveError):
    """復号済みデータの構造が不正な場合の例外。"""


class TruncatedDataError(SaveFormatError):
    """読み取り中にデータ末尾へ到達した場合の例外。"""


class MalformedRecordError(SaveFormatError):
    """レコードの値や長さが想定と一致しない場合の例外。"""


class UnsupportedVersionError(SaveFormatError):
    """未知のバージョンヘッダを持つメンバーを検出した場合の例外。"""


class CatalogError(PhiRksError):
    """難易度カタログに起因する例外。"""


class CatalogLoadError(CatalogError):
    """カタログのソースが欠落している、または行が不正な場合の例外。"""


class CatalogFetchError(CatalogError):
    """カタログのソースファイル取得に失敗した場合の例外。"""


class ValidationError(PhiRksError):
    """呼び出し側の入力が契約を満たさない場合の例外。"""


class InvalidScoreError(ValidationError):
    """ACC が [0, 100] の範囲外である場合の例外。"""


class InvalidParameterError(ValidationError):
    """n が正の整数でないなど、パラメータが不正な場合の例外。"""
