"""
Flight Notifier - 取得元データのパース層

責務:
  - 取得済みレスポンスのパースとFlightRecordへの変換のみ
  - HTTP通信やファイル操作は一切行わない（疎結合）

対象:
  - ソースA: Luxair API のJSON     (parse_luxair_flights)
  - ソースB: 空港サイトの発着案内HTML (parse_airport_board)
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from models import Airport, Direction, FlightRecord

logger = logging.getLogger("flight_notifier")


def _clean(text: str) -> str:
    """文字列内の余分な空白・改行を取り除いてクリーンにする。"""
    if not text:
        return ""
    return re.sub(r'\s+', ' ', text).strip()


# ═══════════════════════════════════════
# ソースA: Luxair API
# ═══════════════════════════════════════

def luxair_collection_key(direction: Direction) -> str:
    """APIのパス・レスポンスキー (departures / arrivals)"""
    return f"{direction.value}s"


def parse_luxair_flights(payload: Dict[str, Any], direction: Direction) -> List[FlightRecord]:
    """
    Luxair APIのレスポンスから、指定方向の便一覧をFlightRecordに変換する。

    レスポンスは {"departures": [...]} / {"arrivals": [...]} 形式。
    各要素に方向 (type) を付与してから変換する。
    変換できない要素はスキップする。
    """
    if not isinstance(payload, dict):
        raise ValueError(f"unexpected Luxair payload: {type(payload).__name__}")

    records: List[FlightRecord] = []
    for item in payload.get(luxair_collection_key(direction)) or []:
        if not isinstance(item, dict):
            continue
        try:
            records.append(FlightRecord.from_dict({**item, "type": direction.value}))
        except (ValueError, TypeError) as e:
            logger.debug(f"Luxairレコードをスキップ: {item.get('flightNumber')} ({e})")
    return records


# ═══════════════════════════════════════
# ソースB: 空港サイトの発着案内
# ═══════════════════════════════════════

# 表の列位置
COL_AIRPORT = 0          # 相手空港名
COL_FLIGHT_NUMBER = 1    # 便名 (先頭2文字が航空会社コード)
COL_VIA = 2              # 経由地
COL_SCHEDULED = 3        # 予定時刻
COL_STATUS = 4           # 状況テキスト
COL_ESTIMATED = 5        # 見込時刻 (空なら予定時刻)
COL_AIRCRAFT = 6         # 機種
COL_AIRLINE = 7          # 航空会社名
MIN_COLUMNS = 8

# 状況テキスト → (flightStatus, flightStatusCode)
STATUS_MAPPING: Dict[str, Tuple[str, str]] = {
    "Take Off": ("Departed", "DEP"),
    "Arrived": ("Landed", "ARR"),
    "Landing": ("Estimated", "EXP"),
    "Taxiing": ("Departed", "DEP"),
    "Expected": ("Estimated", "EXP"),
    "Delayed": ("Estimated", "EXP"),
    "Cancelled": ("Cancelled", "CNX"),
    "": ("Expected", "PLN"),
}
UNKNOWN_STATUS = ("Unknown", "UKN")


def map_status(text: str) -> Tuple[str, str]:
    """状況テキストを (flightStatus, flightStatusCode) に変換する。"""
    return STATUS_MAPPING.get(_clean(text), UNKNOWN_STATUS)


def extract_board_rows(html: str) -> List[List[str]]:
    """発着案内表 (table.fly) の各行をセル文字列の配列として取り出す。先頭の見出し行は除く。"""
    soup = BeautifulSoup(html, 'lxml')
    rows: List[List[str]] = []
    for tr in soup.select('table.fly tr')[1:]:
        rows.append([_clean(td.get_text()) for td in tr.find_all('td')])
    return rows


def row_to_record(cells: List[str], direction: Direction) -> Optional[FlightRecord]:
    """
    発着案内表の1行をFlightRecordに変換する。

    出発便なら相手空港は到着空港 (arrivalAirport)、
    到着便なら出発空港 (departureAirport) として格納する。
    列数が足りない行・便名が空の行は None を返す。
    """
    if len(cells) < MIN_COLUMNS:
        return None

    flight_number = cells[COL_FLIGHT_NUMBER]
    if not flight_number:
        return None

    scheduled = cells[COL_SCHEDULED] or None
    estimated = cells[COL_ESTIMATED] or scheduled
    airport = Airport(name=cells[COL_AIRPORT])
    via = Airport(name=cells[COL_VIA]) if cells[COL_VIA] else None
    flight_status, status_code = map_status(cells[COL_STATUS])

    fields: Dict[str, Any] = {
        "type": direction,
        "flight_number": flight_number,
        "airline_name": cells[COL_AIRLINE],
        "airline_iata": flight_number[:2],
        "flight_status": flight_status,
        "flight_status_code": status_code,
        "via_airport": via,
        "aircraft_type": cells[COL_AIRCRAFT] or None,
    }
    if direction is Direction.DEPARTURE:
        fields.update(
            scheduled_departure=scheduled,
            estimated_departure=estimated,
            arrival_airport=airport,
        )
    else:
        fields.update(
            scheduled_arrival=scheduled,
            estimated_arrival=estimated,
            departure_airport=airport,
        )

    try:
        return FlightRecord(**fields)
    except ValueError as e:
        logger.debug(f"空港サイトの行をスキップ: {cells} ({e})")
        return None


def parse_airport_board(html: str, direction: Direction) -> List[FlightRecord]:
    """発着案内HTMLから指定方向のFlightRecord一覧を抽出する。"""
    records: List[FlightRecord] = []
    for cells in extract_board_rows(html):
        record = row_to_record(cells, direction)
        if record is not None:
            records.append(record)
    return records
