"""
Flight Notifier - リポジトリ層

責務:
  - 前回スナップショットの読み込み（起動時1回）
  - 最新スナップショットの保存（毎サイクル上書き）

設計方針:
  - 保存形式は FlightRecord の JSON 配列（indent=2）
  - ファイル書き込みはワーカースレッドで行い、イベントループを塞がない
  - 読み込みに失敗した場合は空スナップショットから開始する
"""
import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from typing import List, Sequence

from models import FlightRecord

logger = logging.getLogger("flight_notifier")


class SnapshotRepository:
    def __init__(self, path: str):
        self._path = path
        # 保存は発行順に1件ずつ
        self._save_lock = asyncio.Lock()

    @property
    def path(self) -> str:
        return self._path

    # ─────────────────────────────────
    # 読み込み
    # ─────────────────────────────────
    def load(self) -> List[FlightRecord]:
        """
        保存済みスナップショットを読み込む。
        ファイルが存在しない・壊れている場合は空リストを返す（致命的エラーにしない）。
        """
        try:
            with open(self._path, encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, list):
                raise ValueError("snapshot must be a JSON array")
            return [FlightRecord.from_dict(item) for item in data]
        except FileNotFoundError:
            logger.info(f"保存済みスナップショットなし: {self._path}")
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"スナップショット読み込み失敗 ({self._path}): {e}")
        return []

    # ─────────────────────────────────
    # 保存
    # ─────────────────────────────────
    def save(self, snapshot: Sequence[FlightRecord]):
        """スナップショットをJSON配列で上書き保存する。"""
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self._path, 'w', encoding='utf-8') as f:
            json.dump([r.to_dict() for r in snapshot], f, indent=2, ensure_ascii=False)

    async def save_async(self, snapshot: Sequence[FlightRecord]) -> bool:
        """
        ワーカースレッドで保存する。失敗はログに残すのみで例外は送出しない。
        保存できたかどうかを返す。
        """
        try:
            async with self._save_lock:
                await asyncio.to_thread(self.save, list(snapshot))
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"スナップショット保存失敗 ({self._path}): {e}")
            return False
        logger.debug(
            f"スナップショット保存: {len(snapshot)}件 "
            f"({datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')})"
        )
        return True
