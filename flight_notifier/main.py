"""
Flight Notifier - メインループ

責務:
  - 一定間隔のポーリングサイクルの実行（起動直後に1回 + 以降は間隔ごと）
  - 2つの取得元からの並行取得（aiohttp）
  - スナップショットの保存（投げっぱなし）と前回スナップショットの保持
  - 照合・分類・文面生成パイプラインの呼び出しと投稿
  - グレースフルシャットダウン

処理の流れ（1サイクル）:
  取得 → 正規化 → 統合 → 保存 → 差分 → 分類 → 文面生成 → 検証 → 投稿
  サイクル同士は重ならない（前回/今回の組を崩さないため）。
"""
import asyncio
import json
import logging
import os
import signal
import sys
import time
from typing import Any, List, Optional, Set

import aiohttp

import config
from models import Direction, FlightRecord, Notification
from normalizer import exclude_carriers, normalize_luxair_records
from pipeline import merge_snapshots, process_snapshots
from publisher import EchoPublisher, TwitterPublisher
from renderer import RenderError
from repository import SnapshotRepository
from scraper import luxair_collection_key, parse_airport_board, parse_luxair_flights

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/119.0.0.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
}

# RenderError で停止した時の終了コード
EXIT_STREAM_ERROR = 8

# ─────────────────────────────────
# ロガー
# ─────────────────────────────────
logger = logging.getLogger("flight_notifier")


def setup_logging(log_dir: str):
    """
    コンソール (INFO) に加え、log_dir に2種類のログファイルを出力する。
      - verbose.log: DEBUG以上
      - warn.log   : WARNING以上
    """
    os.makedirs(log_dir, exist_ok=True)
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"
    )

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    verbose = logging.FileHandler(os.path.join(log_dir, "verbose.log"), encoding="utf-8")
    verbose.setLevel(logging.DEBUG)
    warn = logging.FileHandler(os.path.join(log_dir, "warn.log"), encoding="utf-8")
    warn.setLevel(logging.WARNING)
    for handler in (console, verbose, warn):
        handler.setFormatter(formatter)

    logging.basicConfig(level=logging.INFO, handlers=[console, verbose, warn])
    logger.setLevel(logging.DEBUG)


# ═══════════════════════════════════════
# 通知ループ本体
# ═══════════════════════════════════════

class FlightNotifier:
    def __init__(
        self,
        repository: SnapshotRepository,
        publisher=None,
        interval: float = config.FETCH_INTERVAL,
    ):
        self._repo = repository
        self._publisher = publisher
        self._interval = interval
        self._session: Optional[aiohttp.ClientSession] = None
        self._shutdown_event = asyncio.Event()
        self._previous: List[FlightRecord] = []
        self._pending_saves: Set[asyncio.Task] = set()
        self._stats = {
            "cycles": 0,
            "fetch_errors": 0,
            "flights": 0,
            "notifications": 0,
            "published": 0,
            "publish_errors": 0,
        }
        self._start_time: float = 0.0

    @property
    def previous(self) -> List[FlightRecord]:
        return self._previous

    @property
    def stats(self) -> dict:
        return dict(self._stats)

    # ─────────────────────────────────
    # HTTP通信（リトライなし）
    # ─────────────────────────────────
    async def _fetch_text(self, url: str) -> str:
        async with self._session.get(url, headers=HEADERS) as resp:
            resp.raise_for_status()
            return await resp.text()

    async def _fetch_json(self, url: str) -> Any:
        async with self._session.get(
            url, headers={**HEADERS, "Accept": "application/json"}
        ) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)

    # ─────────────────────────────────
    # 取得元ごとの取得 + 正規化
    # ─────────────────────────────────
    async def _fetch_luxair_direction(self, direction: Direction) -> List[FlightRecord]:
        url = f"{config.LUXAIR_API_URL.rstrip('/')}/{luxair_collection_key(direction)}"
        payload = await self._fetch_json(url)
        return parse_luxair_flights(payload, direction)

    async def fetch_luxair(self) -> List[FlightRecord]:
        """ソースA: 出発・到着を並行取得し、便名と航空会社名を正規化する。"""
        departures, arrivals = await asyncio.gather(
            self._fetch_luxair_direction(Direction.DEPARTURE),
            self._fetch_luxair_direction(Direction.ARRIVAL),
        )
        return normalize_luxair_records(departures + arrivals)

    async def _fetch_airport_direction(self, direction: Direction, url: str) -> List[FlightRecord]:
        html = await self._fetch_text(url)
        return parse_airport_board(html, direction)

    async def fetch_airport(self) -> List[FlightRecord]:
        """ソースB: 出発・到着の案内ページを並行取得し、対象外の航空会社を除く。"""
        departures, arrivals = await asyncio.gather(
            self._fetch_airport_direction(Direction.DEPARTURE, config.AIRPORT_DEPARTURES_URL),
            self._fetch_airport_direction(Direction.ARRIVAL, config.AIRPORT_ARRIVALS_URL),
        )
        return exclude_carriers(departures + arrivals, config.EXCLUDED_CARRIERS)

    async def fetch_snapshot(self) -> List[FlightRecord]:
        """両方の取得元が揃って初めてスナップショットを作る（片方でも失敗すれば例外）。"""
        luxair, airport = await asyncio.gather(self.fetch_luxair(), self.fetch_airport())
        logger.debug(f"取得: Luxair={len(luxair)}便 | 空港={len(airport)}便")
        return merge_snapshots(luxair, airport)

    # ─────────────────────────────────
    # 保存（投げっぱなし）
    # ─────────────────────────────────
    def _persist(self, snapshot: List[FlightRecord]):
        task = asyncio.create_task(self._repo.save_async(snapshot))
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)

    async def wait_for_saves(self):
        """保存中のスナップショットを書き終えるまで待つ。"""
        if self._pending_saves:
            await asyncio.gather(*self._pending_saves)

    # ─────────────────────────────────
    # 投稿
    # ─────────────────────────────────
    async def _deliver(self, notification: Notification):
        logger.debug(json.dumps(notification.to_dict(), ensure_ascii=False))
        try:
            result = await self._publisher.publish(notification.tweet)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._stats["publish_errors"] += 1
            logger.warning(f"投稿失敗: {e.__class__.__name__}: {e} | {notification.tweet}")
            return

        if result.get("errors"):
            self._stats["publish_errors"] += 1
            logger.warning(json.dumps(result, ensure_ascii=False, default=str))
            return

        self._stats["published"] += 1
        logger.info(f"投稿: {result['created_at']} - {result['text']} - {result['id_str']}")

    # ─────────────────────────────────
    # 1サイクル
    # ─────────────────────────────────
    async def run_cycle(self) -> List[Notification]:
        """
        1回分のポーリングを行い、投稿した（しようとした）文面を返す。

        取得に失敗した場合はサイクルを中断し、前回スナップショットはそのまま残す。
        RenderError は呼び出し元に送出する。
        """
        self._stats["cycles"] += 1
        try:
            current = await self.fetch_snapshot()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self._stats["fetch_errors"] += 1
            logger.error(f"取得失敗のためサイクル中断: {e.__class__.__name__}: {e}")
            return []

        self._stats["flights"] = len(current)
        self._persist(current)

        notifications = process_snapshots(self._previous, current)
        self._previous = current
        self._stats["notifications"] += len(notifications)

        for notification in notifications:
            await self._deliver(notification)
        return notifications

    # ─────────────────────────────────
    # エントリポイント
    # ─────────────────────────────────
    async def run(self, once: bool = False):
        """通知ループのメインエントリポイント。"""
        self._previous = self._repo.load()

        # グレースフルシャットダウンのシグナルハンドラ登録
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                pass

        connector = aiohttp.TCPConnector(ttl_dns_cache=300, keepalive_timeout=60)
        timeout = aiohttp.ClientTimeout(total=config.REQUEST_TIMEOUT)
        async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
            self._session = session
            if self._publisher is None:
                self._publisher = self._default_publisher(session)

            self._start_time = time.monotonic()
            logger.info(
                f"通知ループ開始 | "
                f"環境={config.APP_ENV} | "
                f"投稿={self._publisher.__class__.__name__} | "
                f"間隔={self._interval:.0f}秒 | "
                f"前回スナップショット={len(self._previous)}便"
            )

            try:
                while not self._shutdown_event.is_set():
                    cycle_start = time.monotonic()
                    await self.run_cycle()
                    if once:
                        break
                    wait = max(0.0, self._interval - (time.monotonic() - cycle_start))
                    try:
                        await asyncio.wait_for(self._shutdown_event.wait(), timeout=wait)
                    except asyncio.TimeoutError:
                        pass
            finally:
                # 保存中のスナップショットは書き終えてから終了する
                await self.wait_for_saves()

        self._print_final_report(time.monotonic() - self._start_time)

    def _default_publisher(self, session: aiohttp.ClientSession):
        if config.is_production():
            return TwitterPublisher(session, config.TWEET_ENDPOINT, config.TWITTER_BEARER_TOKEN)
        return EchoPublisher()

    def _print_final_report(self, total_time: float):
        """終了時の統計レポート。"""
        s = self._stats
        logger.info(
            f"\n"
            f"{'='*60}\n"
            f"  通知ループ終了レポート\n"
            f"{'='*60}\n"
            f"  稼働時間    : {total_time / 60:.1f}分 ({total_time:.0f}秒)\n"
            f"  サイクル    : {s['cycles']}\n"
            f"  取得エラー  : {s['fetch_errors']}\n"
            f"  最新便数    : {s['flights']}\n"
            f"  通知文面    : {s['notifications']}\n"
            f"  投稿        : {s['published']}\n"
            f"  投稿エラー  : {s['publish_errors']}\n"
            f"{'='*60}"
        )

    def _handle_shutdown(self):
        """シグナルハンドラ: グレースフルシャットダウンを要請する。"""
        logger.warning("停止シグナル受信。実行中のサイクルを完了して終了します...")
        self._shutdown_event.set()


# ─────────────────────────────────
# CLI
# ─────────────────────────────────
def main(argv=None) -> int:
    import argparse

    parser = argparse.ArgumentParser(description="フライト遅延・欠航の通知ボット")
    parser.add_argument(
        "--interval",
        type=float,
        default=config.FETCH_INTERVAL,
        help=f"ポーリング間隔（秒） (デフォルト: {config.FETCH_INTERVAL:.0f})",
    )
    parser.add_argument(
        "--state-path",
        default=config.STATE_PATH,
        help=f"スナップショット保存先 (デフォルト: {config.STATE_PATH})",
    )
    parser.add_argument(
        "--log-dir",
        default=config.DATA_DIR,
        help=f"ログ出力先 (デフォルト: {config.DATA_DIR})",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="1サイクルだけ実行して終了する",
    )
    args = parser.parse_args(argv)

    setup_logging(args.log_dir)
    notifier = FlightNotifier(SnapshotRepository(args.state_path), interval=args.interval)

    try:
        import uvloop
    except ImportError:
        uvloop = None

    try:
        if uvloop is not None:
            logger.info("uvloop 有効化")
            uvloop.run(notifier.run(once=args.once))
        else:
            asyncio.run(notifier.run(once=args.once))
    except RenderError as e:
        logger.error(f"致命的エラーのため停止: {e}", exc_info=True)
        return EXIT_STREAM_ERROR
    return 0


if __name__ == "__main__":
    sys.exit(main())
