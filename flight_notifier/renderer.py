"""
Flight Notifier - 投稿文面の生成・検証

責務:
  - status_type ごとのテンプレートによる文面生成 (render)
  - 文面のスキーマ検証と不正文面の破棄 (create_notification)

status_type とテンプレートは TEMPLATES で1対1に対応付ける。
対応するテンプレートがない status_type は RenderError（致命的エラー）とする。
"""
import logging
from typing import Callable, Dict, Optional

from models import Airport, Direction, FlightEvent, FlightRecord, Notification, StatusType

logger = logging.getLogger("flight_notifier")


class RenderError(RuntimeError):
    """テンプレートが存在しない、または遅延分数が欠けている分類結果"""


# ─────────────────────────────────
# 文面の部品
# ─────────────────────────────────

def pluralize_minutes(diff: int) -> str:
    """1分なら "1 minute"、それ以外は "N minutes"。"""
    minutes = abs(diff)
    return f"{minutes} {'minute' if minutes == 1 else 'minutes'}"


def late_or_early(diff: int) -> str:
    return "early" if diff <= 0 else "late"


def _airport_text(airport: Airport) -> str:
    code = f" #{airport.code}" if airport.code else ""
    return f"{airport.name}{code}"


def _via_text(record: FlightRecord) -> str:
    if record.via_airport is None:
        return ""
    return f" via {_airport_text(record.via_airport)}"


def _gate_text(record: FlightRecord) -> str:
    # ターミナルとゲートが両方揃っている時のみ
    if record.gate and record.terminal:
        return f" from gate {record.terminal}{record.gate}"
    return ""


def _route_text(record: FlightRecord) -> str:
    """"to <到着空港>" / "from <出発空港>" + 経由地"""
    # 空港が欠けた文面は後段の検証で破棄される
    airport = record.counterpart_airport or Airport(name="")
    preposition = "to" if record.type is Direction.DEPARTURE else "from"
    return f"{preposition} {_airport_text(airport)}{_via_text(record)}"


def _deviation(event: FlightEvent) -> int:
    if event.diff is None:
        raise RenderError(
            f"{event.status_type.value} without diff for {event.record.flight_number}"
        )
    return event.diff


# ─────────────────────────────────
# テンプレート
# ─────────────────────────────────

def _render_cancelled(event: FlightEvent) -> str:
    record = event.record
    return (
        f"{record.airline_name} flight #{record.flight_number} {_route_text(record)} "
        f"at {record.scheduled_time} has been cancelled."
    )


def _render_departure(event: FlightEvent) -> str:
    record = event.record
    diff = _deviation(event)
    return (
        f"{record.airline_name} flight #{record.flight_number} {_route_text(record)} "
        f"is expected to depart {pluralize_minutes(diff)} {late_or_early(diff)} "
        f"at {record.estimated_departure}{_gate_text(record)}."
    )


def _render_arrival(event: FlightEvent) -> str:
    record = event.record
    diff = _deviation(event)
    return (
        f"{record.airline_name} flight #{record.flight_number} {_route_text(record)} "
        f"is expected to arrive {pluralize_minutes(diff)} {late_or_early(diff)} "
        f"at {record.estimated_arrival}."
    )


TEMPLATES: Dict[StatusType, Callable[[FlightEvent], str]] = {
    StatusType.CANCELLED: _render_cancelled,
    StatusType.INITIAL_DELAYED_DEPARTURE: _render_departure,
    StatusType.INITIAL_EARLY_DEPARTURE: _render_departure,
    StatusType.CHANGE_DELAYED_DEPARTURE: _render_departure,
    StatusType.CHANGE_EARLY_DEPARTURE: _render_departure,
    StatusType.INITIAL_DELAYED_ARRIVAL: _render_arrival,
    StatusType.INITIAL_EARLY_ARRIVAL: _render_arrival,
    StatusType.CHANGE_DELAYED_ARRIVAL: _render_arrival,
    StatusType.CHANGE_EARLY_ARRIVAL: _render_arrival,
}


def render(event: FlightEvent) -> str:
    """分類済みイベントの投稿文面を生成する。"""
    template = TEMPLATES.get(event.status_type)
    if template is None:
        raise RenderError(f"no template for status_type {event.status_type.value}")
    return template(event)


def create_notification(event: FlightEvent) -> Optional[Notification]:
    """
    文面を生成し、スキーマ検証に通ったものだけを返す。

    検証に失敗した文面はログに残して破棄する（Noneを返す）。
    RenderError はそのまま送出する。
    """
    text = render(event)
    try:
        return Notification(tweet=text, event=event)
    except ValueError as e:
        logger.warning(f"文面の検証エラーのため破棄: {e} | {text!r}")
        return None
