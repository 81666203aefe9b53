"""
Flight Notifier - 実行設定

責務:
  - 接続先URL・ポーリング間隔・保存先の一元管理
  - 環境変数からの設定読み込み
  - 本番/非本番の切り替え判定
"""
import os


# ─────────────────────────────────
# 実行環境（APP_ENV=production の時のみ実投稿）
# ─────────────────────────────────
APP_ENV = os.environ.get("APP_ENV", "development")

# ポーリング間隔（秒）
FETCH_INTERVAL = float(os.environ.get("FETCH_INTERVAL", "60"))

# HTTP要求タイムアウト（秒）
REQUEST_TIMEOUT = float(os.environ.get("REQUEST_TIMEOUT", "15"))

# ─────────────────────────────────
# 取得元（ソースA: Luxair JSON API / ソースB: 空港HTML）
# ─────────────────────────────────
LUXAIR_API_URL = os.environ.get(
    "LUXAIR_API_URL",
    "https://api.luxair.lu/v2/flights",
)
AIRPORT_DEPARTURES_URL = os.environ.get(
    "AIRPORT_DEPARTURES_URL",
    "http://www.lux-airport.lu/en/Flights-information/Todays-departure.9.html",
)
AIRPORT_ARRIVALS_URL = os.environ.get(
    "AIRPORT_ARRIVALS_URL",
    "http://www.lux-airport.lu/en/Flights-information/Todays-arrivals.10.html",
)

# ソースBから除外する航空会社コード（ソースAで取得済み）
EXCLUDED_CARRIERS = frozenset(
    code.strip().upper()
    for code in os.environ.get("EXCLUDED_CARRIERS", "LG").split(",")
    if code.strip()
)

# ─────────────────────────────────
# 保存先
# ─────────────────────────────────
DATA_DIR = os.environ.get(
    "DATA_DIR",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"),
)
STATE_PATH = os.environ.get("STATE_PATH", os.path.join(DATA_DIR, "state.json"))

# ─────────────────────────────────
# 投稿先
# ─────────────────────────────────
TWEET_ENDPOINT = os.environ.get("TWEET_ENDPOINT", "https://api.twitter.com/2/tweets")
TWITTER_BEARER_TOKEN = os.environ.get("TWITTER_BEARER_TOKEN", "")


def is_production() -> bool:
    """本番環境（実際に投稿する）かどうかを返す。"""
    return APP_ENV == "production"
