"""
Flight Notifier - 照合・分類パイプライン

責務:
  - 2つの取得元のスナップショット統合 (merge_snapshots)
  - 前回スナップショットとの差分検出 (find_changes)
  - 遅延/早着/欠航の分類 (classify)
  - 1サイクル分の一連の処理 (process_snapshots)

すべて純粋関数で、通信・保存は行わない。
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

import jsonpatch

from models import Direction, FlightChange, FlightEvent, FlightRecord, Notification, StatusType
from renderer import create_notification

logger = logging.getLogger("flight_notifier")

# 見込時刻が予定の6時間前より早ければ日付を跨いだとみなす
ROLLOVER_WINDOW = timedelta(hours=6)

# 報告対象とする最小の遅延/早着（分、以上）
THRESHOLDS = {
    Direction.ARRIVAL: 15,
    Direction.DEPARTURE: 30,
}

# 到着済み・出発済みの便は通知しない
COMPLETED_STATUS_CODES = frozenset({"ARR", "DEP"})

CANCELLED = "Cancelled"


# ═══════════════════════════════════════
# 統合
# ═══════════════════════════════════════

def merge_snapshots(*snapshots: Iterable[FlightRecord]) -> List[FlightRecord]:
    """
    複数の取得元のレコードを和集合として1つのスナップショットにまとめる。

    完全に同一のレコードのみ1件にまとめ、1フィールドでも異なれば両方残す。
    順序は引数順・各リスト内の順を保つ。
    """
    merged: List[FlightRecord] = []
    for snapshot in snapshots:
        for record in snapshot:
            if record not in merged:
                merged.append(record)
    return merged


# ═══════════════════════════════════════
# 差分検出
# ═══════════════════════════════════════

def find_changes(
    previous: Sequence[FlightRecord],
    current: Sequence[FlightRecord],
) -> List[FlightChange]:
    """
    今回のスナップショットの各便を前回と突き合わせる。

      - 前回に同じ (方向, 便名) がない → 新規便としてそのまま返す
      - 前回と完全に同一               → 何も返さない
      - 差分あり                       → previous と changes を付けて返す

    前回に同じキーが複数あれば先頭のものを使う。
    """
    previous_by_key = {}
    for record in previous:
        previous_by_key.setdefault(record.key, record)

    results: List[FlightChange] = []
    for record in current:
        previous_record = previous_by_key.get(record.key)
        if previous_record is None:
            results.append(FlightChange(record=record))
            continue

        changes = jsonpatch.make_patch(previous_record.to_dict(), record.to_dict()).patch
        if not changes:
            continue
        results.append(FlightChange(record=record, previous=previous_record, changes=changes))
    return results


def is_completed(record: FlightRecord) -> bool:
    """到着済み (ARR) または出発済み (DEP) かどうか。"""
    return record.flight_status_code in COMPLETED_STATUS_CODES


# ═══════════════════════════════════════
# 分類
# ═══════════════════════════════════════

def _parse_clock(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), "%H:%M")
    except ValueError:
        return None


def calc_time_diff(record: FlightRecord) -> Optional[int]:
    """
    見込時刻 - 予定時刻 を分単位で返す（正: 遅延、負: 早着）。

    日付情報がないため、見込時刻が予定時刻の6時間前より早く見える場合は
    翌日に跨いだものとして24時間を足す（23:50予定 → 00:10見込 = +20分）。
    時刻が読めない場合は None。
    """
    scheduled = _parse_clock(record.scheduled_time)
    estimated = _parse_clock(record.estimated_time)
    if scheduled is None or estimated is None:
        return None

    if estimated < scheduled - ROLLOVER_WINDOW:
        estimated += timedelta(days=1)

    return int((estimated - scheduled).total_seconds() // 60)


def classify(change: FlightChange) -> FlightEvent:
    """便の状態を status_type に分類する。"""
    record = change.record
    if record.flight_status == CANCELLED:
        return FlightEvent(change=change, status_type=StatusType.CANCELLED)

    diff = calc_time_diff(record)
    if diff is None:
        logger.debug(
            f"時刻を解釈できないため定刻扱い: {record.flight_number} "
            f"({record.scheduled_time!r} / {record.estimated_time!r})"
        )
        return FlightEvent(change=change, status_type=StatusType.AS_SCHEDULED)

    if abs(diff) < THRESHOLDS[record.type]:
        return FlightEvent(change=change, status_type=StatusType.AS_SCHEDULED, diff=diff)

    prefix = "change" if change.changes else "initial"
    suffix = "early" if diff <= 0 else "delayed"
    status_type = StatusType(f"{prefix}_{suffix}_{record.type.value}")
    return FlightEvent(change=change, status_type=status_type, diff=diff)


# ═══════════════════════════════════════
# 1サイクル分の処理
# ═══════════════════════════════════════

def detect_events(
    previous: Sequence[FlightRecord],
    current: Sequence[FlightRecord],
) -> List[FlightEvent]:
    """差分検出 → 到着/出発済みの除外 → 分類 → 定刻の除外"""
    events: List[FlightEvent] = []
    for change in find_changes(previous, current):
        if is_completed(change.record):
            continue
        event = classify(change)
        if event.status_type is StatusType.AS_SCHEDULED:
            continue
        events.append(event)
    return events


def process_snapshots(
    previous: Sequence[FlightRecord],
    current: Sequence[FlightRecord],
) -> List[Notification]:
    """前回・今回のスナップショットから、検証済みの投稿文面を生成する。"""
    notifications: List[Notification] = []
    for event in detect_events(previous, current):
        notification = create_notification(event)
        if notification is not None:
            notifications.append(notification)
    return notifications
