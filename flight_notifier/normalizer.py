"""
Flight Notifier - 取得元ごとのレコード正規化

責務:
  - 便名の正規化 ("LG-0403" → "LG403")
  - 航空会社名の正規化 ("LUXAIR S.A." → "Luxair")
  - 対象外の航空会社のレコード除外

パターンに一致しない入力は変更せずにそのまま通す。
"""
import re
from dataclasses import replace
from typing import Iterable, List

from models import FlightRecord

_FLIGHT_NUMBER_PATTERN = re.compile(r'^([A-Za-z0-9]+)-(\d+)$')
_LUXAIR_PATTERN = re.compile(r'^LUXAIR', re.IGNORECASE)
CANONICAL_LUXAIR = "Luxair"


def normalize_flight_number(flight_number: str) -> str:
    """"<航空会社>-<数字>" を "<航空会社><数字>" に変換し、数字の先頭0を落とす。"""
    match = _FLIGHT_NUMBER_PATTERN.match(flight_number)
    if not match:
        return flight_number
    return f"{match.group(1)}{int(match.group(2))}"


def normalize_airline_name(airline_name: str) -> str:
    """Luxairのマーケティング名を正式な短縮名に揃える。"""
    if _LUXAIR_PATTERN.match(airline_name):
        return CANONICAL_LUXAIR
    return airline_name


def normalize_luxair_records(records: Iterable[FlightRecord]) -> List[FlightRecord]:
    """ソースA (Luxair API) のレコードを正規化する。"""
    return [
        replace(
            r,
            flight_number=normalize_flight_number(r.flight_number),
            airline_name=normalize_airline_name(r.airline_name),
        )
        for r in records
    ]


def exclude_carriers(
    records: Iterable[FlightRecord],
    excluded: Iterable[str],
) -> List[FlightRecord]:
    """ソースB (空港HTML) から対象外の航空会社コードのレコードを除く。"""
    excluded = {code.upper() for code in excluded}
    return [
        r for r in records
        if (r.airline_iata or "").upper() not in excluded
    ]
