"""
Flight Notifier - データモデル定義

各Entityの責務:
  - Airport: 相手空港・経由地 (コード + 名称)
  - FlightRecord: 1回のポーリングで観測した1便1方向の情報
  - FlightChange: 前回スナップショットとの差分付きレコード
  - FlightEvent: 分類済みイベント (status_type + 遅延分数)
  - Notification: 投稿文面 + スキーマ検証
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def _check_str(value: Any, label: str):
    """取得元から文字列以外が届いた場合は ValueError にする。"""
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{label} must be a string: {value!r}")


class Direction(str, Enum):
    ARRIVAL = "arrival"
    DEPARTURE = "departure"


class StatusType(str, Enum):
    AS_SCHEDULED = "as_scheduled"
    CANCELLED = "cancelled"
    INITIAL_DELAYED_DEPARTURE = "initial_delayed_departure"
    INITIAL_EARLY_DEPARTURE = "initial_early_departure"
    CHANGE_DELAYED_DEPARTURE = "change_delayed_departure"
    CHANGE_EARLY_DEPARTURE = "change_early_departure"
    INITIAL_DELAYED_ARRIVAL = "initial_delayed_arrival"
    INITIAL_EARLY_ARRIVAL = "initial_early_arrival"
    CHANGE_DELAYED_ARRIVAL = "change_delayed_arrival"
    CHANGE_EARLY_ARRIVAL = "change_early_arrival"


@dataclass
class Airport:
    """空港 (コードは取得元によって欠ける)"""
    name: str
    code: Optional[str] = None

    def __post_init__(self):
        _check_str(self.name, "airport name")
        _check_str(self.code, "airport code")
        self.name = (self.name or "").strip()
        if self.code is not None:
            self.code = self.code.strip().upper() or None

    def to_dict(self) -> Dict[str, str]:
        data = {"name": self.name}
        if self.code is not None:
            data["code"] = self.code
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Airport"]:
        if not isinstance(data, dict):
            return None
        return cls(name=data.get("name") or "", code=data.get("code"))


# 属性名 → JSONキー（取得元・保存ファイル共通のキー名）
_JSON_KEYS = {
    "type": "type",
    "flight_number": "flightNumber",
    "airline_name": "airlineName",
    "airline_iata": "airlineIATA",
    "flight_status": "flightStatus",
    "flight_status_code": "flightStatusCode",
    "scheduled_arrival": "scheduledArrival",
    "estimated_arrival": "estimatedArrival",
    "scheduled_departure": "scheduledDeparture",
    "estimated_departure": "estimatedDeparture",
    "departure_airport": "departureAirport",
    "arrival_airport": "arrivalAirport",
    "via_airport": "viaAirport",
    "gate": "gate",
    "terminal": "terminal",
    "aircraft_type": "aircraftType",
}
_AIRPORT_FIELDS = ("departure_airport", "arrival_airport", "via_airport")
_STRING_FIELDS = (
    "airline_name", "airline_iata", "flight_status", "flight_status_code",
    "scheduled_arrival", "estimated_arrival", "scheduled_departure", "estimated_departure",
    "aircraft_type",
)

# 方向ごとに「相手方向では埋まってはならない」フィールド
_OTHER_DIRECTION_FIELDS = {
    Direction.ARRIVAL: ("scheduled_departure", "estimated_departure", "arrival_airport"),
    Direction.DEPARTURE: ("scheduled_arrival", "estimated_arrival", "departure_airport"),
}


@dataclass
class FlightRecord:
    """1便1方向の観測値（1ポーリング = 1レコード）"""
    type: Direction
    flight_number: str
    airline_name: str = ""
    airline_iata: Optional[str] = None
    flight_status: Optional[str] = None
    flight_status_code: Optional[str] = None
    scheduled_arrival: Optional[str] = None
    estimated_arrival: Optional[str] = None
    scheduled_departure: Optional[str] = None
    estimated_departure: Optional[str] = None
    departure_airport: Optional[Airport] = None
    arrival_airport: Optional[Airport] = None
    via_airport: Optional[Airport] = None
    gate: Optional[str] = None
    terminal: Optional[str] = None
    aircraft_type: Optional[str] = None

    def __post_init__(self):
        self.type = Direction(self.type)
        if not self.flight_number or not str(self.flight_number).strip():
            raise ValueError("flight_number must not be empty")
        self.flight_number = str(self.flight_number).strip()
        for name in _STRING_FIELDS:
            _check_str(getattr(self, name), name)
        self.airline_name = (self.airline_name or "").strip()
        # ゲート番号はAPIによって数値で届く
        if self.gate is not None:
            self.gate = str(self.gate).strip() or None
        if self.terminal is not None:
            self.terminal = str(self.terminal).strip() or None
        self.check_direction()

    def check_direction(self):
        """type と逆方向の時刻・空港が埋まっていないことを保証する。"""
        for name in _OTHER_DIRECTION_FIELDS[self.type]:
            if getattr(self, name) is not None:
                raise ValueError(
                    f"{name} must be empty for {self.type.value} {self.flight_number}"
                )

    # ─────────────────────────────────
    # 方向に応じたアクセサ
    # ─────────────────────────────────
    @property
    def key(self) -> Tuple[Direction, str]:
        return self.type, self.flight_number

    @property
    def scheduled_time(self) -> Optional[str]:
        if self.type is Direction.ARRIVAL:
            return self.scheduled_arrival
        return self.scheduled_departure

    @property
    def estimated_time(self) -> Optional[str]:
        if self.type is Direction.ARRIVAL:
            return self.estimated_arrival
        return self.estimated_departure

    @property
    def counterpart_airport(self) -> Optional[Airport]:
        if self.type is Direction.ARRIVAL:
            return self.departure_airport
        return self.arrival_airport

    # ─────────────────────────────────
    # JSON変換
    # ─────────────────────────────────
    def to_dict(self) -> Dict[str, Any]:
        """JSON互換のdictに変換する。Noneのフィールドは出力しない。"""
        data: Dict[str, Any] = {}
        for attr, key in _JSON_KEYS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, Airport):
                value = value.to_dict()
            elif isinstance(value, Direction):
                value = value.value
            data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FlightRecord":
        """JSONのdictから生成する。未知のキーは無視する。"""
        kwargs = {}
        for attr, key in _JSON_KEYS.items():
            if key not in data or data[key] is None:
                continue
            if attr in _AIRPORT_FIELDS:
                kwargs[attr] = Airport.from_dict(data[key])
            else:
                kwargs[attr] = data[key]
        if "type" not in kwargs:
            raise ValueError("type must not be empty")
        return cls(**kwargs)


@dataclass
class FlightChange:
    """差分検出の結果（新規便は previous なし・changes 空）"""
    record: FlightRecord
    previous: Optional[FlightRecord] = None
    changes: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class FlightEvent:
    """分類済みイベント"""
    change: FlightChange
    status_type: StatusType
    diff: Optional[int] = None

    @property
    def record(self) -> FlightRecord:
        return self.change.record


# ─────────────────────────────────
# 投稿文面のスキーマ
# ─────────────────────────────────
TWEET_MIN_LENGTH = 20
TWEET_MAX_LENGTH = 140

_FLIGHT_NUMBER_PATTERN = re.compile(r'^[A-Z0-9]{2}\d+')
_TIME_PATTERN = re.compile(r'^\d{2}:\d{2}$')


def _check_airport(airport: Optional[Airport], label: str):
    if airport is None:
        raise ValueError(f"{label} is required")
    if not airport.name:
        raise ValueError(f"{label}.name must not be empty")
    if airport.code is not None and len(airport.code) != 3:
        raise ValueError(f"{label}.code must be 3 characters: {airport.code}")


def _check_time(value: Optional[str], label: str):
    if value is None or not _TIME_PATTERN.match(value):
        raise ValueError(f"{label} must be HH:MM: {value!r}")


@dataclass
class Notification:
    """
    投稿文面。生成時にスキーマ検証を行い、違反があれば ValueError を送出する。

    検証内容:
      - 文字数が 20〜140
      - 航空会社名・便名 (航空会社コード + 数字) が存在する
      - 自方向の相手空港・予定時刻・見込時刻が存在し、逆方向のものは存在しない
      - 時刻は HH:MM 形式
    """
    tweet: str
    event: FlightEvent
    tweet_length: int = field(init=False)

    def __post_init__(self):
        self.tweet_length = len(self.tweet or "")
        if not TWEET_MIN_LENGTH <= self.tweet_length <= TWEET_MAX_LENGTH:
            raise ValueError(
                f"tweet length must be {TWEET_MIN_LENGTH}-{TWEET_MAX_LENGTH}: "
                f"{self.tweet_length}"
            )

        record = self.event.record
        if not record.airline_name:
            raise ValueError(f"airline_name must not be empty for {record.flight_number}")
        if not _FLIGHT_NUMBER_PATTERN.match(record.flight_number):
            raise ValueError(f"invalid flight_number: {record.flight_number}")

        record.check_direction()
        direction = record.type.value
        _check_airport(record.counterpart_airport, f"{direction} counterpart airport")
        _check_time(record.scheduled_time, f"scheduled {direction}")
        _check_time(record.estimated_time, f"estimated {direction}")
        if record.via_airport is not None:
            _check_airport(record.via_airport, "via_airport")

    def to_dict(self) -> Dict[str, Any]:
        data = self.event.record.to_dict()
        data["status_type"] = self.event.status_type.value
        if self.event.diff is not None:
            data["diff"] = self.event.diff
        data["tweet"] = self.tweet
        data["tweet_length"] = self.tweet_length
        return data
