"""
照合・分類パイプラインのテスト

検証項目:
  1. 正規化（便名・航空会社名・対象外航空会社）
  2. 統合（和集合・順序）
  3. 差分検出（同一なら出力なし、新規はそのまま、差分は previous/changes 付き）
  4. 分類（符号・閾値・日付跨ぎ・欠航・initial/change）
  5. 1サイクル通しのシナリオ
"""
import os
import sys
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from models import Airport, Direction, FlightChange, FlightRecord, StatusType
from normalizer import (
    exclude_carriers,
    normalize_airline_name,
    normalize_flight_number,
    normalize_luxair_records,
)
from pipeline import (
    calc_time_diff,
    classify,
    detect_events,
    find_changes,
    merge_snapshots,
    process_snapshots,
)
from scraper import parse_airport_board


def departure(flight_number='LG4591', scheduled='10:00', estimated='10:00', **kwargs):
    fields = dict(
        type=Direction.DEPARTURE,
        flight_number=flight_number,
        airline_name='Luxair',
        airline_iata='LG',
        flight_status='Expected',
        flight_status_code='EXP',
        scheduled_departure=scheduled,
        estimated_departure=estimated,
        arrival_airport=Airport(name='London City', code='LCY'),
    )
    fields.update(kwargs)
    return FlightRecord(**fields)


def arrival(flight_number='LG4592', scheduled='10:00', estimated='10:00', **kwargs):
    fields = dict(
        type=Direction.ARRIVAL,
        flight_number=flight_number,
        airline_name='Luxair',
        airline_iata='LG',
        flight_status='Expected',
        flight_status_code='EXP',
        scheduled_arrival=scheduled,
        estimated_arrival=estimated,
        departure_airport=Airport(name='Porto', code='OPO'),
    )
    fields.update(kwargs)
    return FlightRecord(**fields)


# ═══════════════════════════════════════
# 1. 正規化
# ═══════════════════════════════════════
def test_normalize_flight_number():
    """"LG-0403" → "LG403"、パターン外はそのまま"""
    assert normalize_flight_number('LG-0403') == 'LG403'
    assert normalize_flight_number('LG-4591') == 'LG4591'
    assert normalize_flight_number('LG4591') == 'LG4591'
    assert normalize_flight_number('LG-ABC') == 'LG-ABC'

def test_normalize_airline_name():
    """LUXAIRで始まる名前のみ Luxair に揃える"""
    assert normalize_airline_name('LUXAIR S.A.') == 'Luxair'
    assert normalize_airline_name('Luxair Luxembourg Airlines') == 'Luxair'
    assert normalize_airline_name('TAP Portugal') == 'TAP Portugal'
    assert normalize_airline_name('Not LUXAIR') == 'Not LUXAIR'

def test_normalize_luxair_records():
    """ソースAのレコードに両方の正規化がかかる"""
    records = normalize_luxair_records([
        departure(flight_number='LG-0403', airline_name='LUXAIR S.A.'),
    ])
    assert records[0].flight_number == 'LG403'
    assert records[0].airline_name == 'Luxair'

def test_exclude_carriers():
    """対象外の航空会社コードのみ除外し、コードなしは残す"""
    records = [
        departure(flight_number='LG4591', airline_iata='LG'),
        departure(flight_number='TP1234', airline_iata='TP'),
        departure(flight_number='XX1', airline_iata=None),
    ]
    kept = exclude_carriers(records, {'lg'})
    assert [r.flight_number for r in kept] == ['TP1234', 'XX1']


# ═══════════════════════════════════════
# 2. 統合
# ═══════════════════════════════════════
def test_merge_identical_collapsed():
    """完全に同一のレコードは1件になる"""
    merged = merge_snapshots([departure()], [departure()])
    assert len(merged) == 1

def test_merge_conflicting_kept():
    """1フィールドでも異なれば両方残り、順序は引数順"""
    a = departure(estimated='10:10')
    b = departure(estimated='10:20')
    c = arrival()
    merged = merge_snapshots([a, c], [b])
    assert merged == [a, c, b]


# ═══════════════════════════════════════
# 3. 差分検出
# ═══════════════════════════════════════
def test_diff_identical_suppressed():
    """前回と同一のレコードは何も出力しない"""
    assert find_changes([departure(), arrival()], [departure(), arrival()]) == []

def test_diff_new_flight_bare():
    """前回にない便はそのまま出力する"""
    record = departure()
    changes = find_changes([], [record])
    assert len(changes) == 1
    assert changes[0].record is record
    assert changes[0].previous is None
    assert changes[0].changes == []

def test_diff_changed_annotated():
    """差分があれば previous と changes を付ける"""
    before = departure(estimated='10:00')
    after = departure(estimated='10:35')
    changes = find_changes([before], [after])
    assert len(changes) == 1
    assert changes[0].previous is before
    assert changes[0].changes == [
        {'op': 'replace', 'path': '/estimatedDeparture', 'value': '10:35'},
    ]

def test_diff_nested_airport():
    """相手空港の中身の変更も検出する"""
    before = departure()
    after = departure(arrival_airport=Airport(name='London City', code='LHR'))
    changes = find_changes([before], [after])[0].changes
    assert {'op': 'replace', 'path': '/arrivalAirport/code', 'value': 'LHR'} in changes

def test_diff_key_includes_direction():
    """同じ便名でも方向が違えば別の便として扱う"""
    previous = [departure(flight_number='LG1')]
    current = [arrival(flight_number='LG1')]
    changes = find_changes(previous, current)
    assert changes[0].previous is None

def test_diff_first_previous_wins_and_order():
    """前回に同じキーが複数あれば先頭を使い、出力順は今回の順"""
    first = departure(estimated='10:05')
    second = departure(estimated='10:50')
    current = [arrival(), departure(estimated='10:50')]
    changes = find_changes([first, second], current)
    assert [c.record.type for c in changes] == [Direction.ARRIVAL, Direction.DEPARTURE]
    assert changes[1].previous is first


# ═══════════════════════════════════════
# 4. 分類
# ═══════════════════════════════════════
def test_time_diff_sign():
    """見込 - 予定 が正なら遅延、負なら早着"""
    assert calc_time_diff(departure(scheduled='10:00', estimated='10:35')) == 35
    assert calc_time_diff(departure(scheduled='10:00', estimated='09:40')) == -20

def test_time_diff_midnight_rollover():
    """23:50予定 → 00:10見込 は翌日扱いで +20分"""
    assert calc_time_diff(arrival(scheduled='23:50', estimated='00:10')) == 20

def test_time_diff_rollover_boundary():
    """ちょうど6時間前は日付を跨がない"""
    assert calc_time_diff(departure(scheduled='18:00', estimated='12:00')) == -360
    assert calc_time_diff(departure(scheduled='18:00', estimated='11:59')) == 1079

def test_time_diff_unreadable():
    """時刻が読めなければ None"""
    assert calc_time_diff(departure(estimated=None)) is None
    assert calc_time_diff(departure(estimated='soon')) is None

def test_arrival_threshold():
    """到着便は15分以上で対象"""
    assert classify(FlightChange(arrival(estimated='10:14'))).status_type is StatusType.AS_SCHEDULED
    assert classify(FlightChange(arrival(estimated='10:15'))).status_type is StatusType.INITIAL_DELAYED_ARRIVAL
    assert classify(FlightChange(arrival(estimated='09:45'))).status_type is StatusType.INITIAL_EARLY_ARRIVAL

def test_departure_threshold():
    """出発便は30分以上で対象"""
    assert classify(FlightChange(departure(estimated='10:29'))).status_type is StatusType.AS_SCHEDULED
    assert classify(FlightChange(departure(estimated='10:30'))).status_type is StatusType.INITIAL_DELAYED_DEPARTURE
    assert classify(FlightChange(departure(estimated='09:30'))).status_type is StatusType.INITIAL_EARLY_DEPARTURE

def test_change_prefix():
    """changes を持つレコードは change_ 系になる"""
    before = departure(estimated='10:35')
    after = departure(estimated='10:50')
    change = find_changes([before], [after])[0]
    event = classify(change)
    assert event.status_type is StatusType.CHANGE_DELAYED_DEPARTURE
    assert event.diff == 50

def test_cancelled_always():
    """欠航は遅延分数に関係なく cancelled"""
    event = classify(FlightChange(departure(estimated='15:00', flight_status='Cancelled')))
    assert event.status_type is StatusType.CANCELLED
    assert event.diff is None
    event = classify(FlightChange(arrival(flight_status='Cancelled')))
    assert event.status_type is StatusType.CANCELLED

def test_classify_idempotent():
    """同じ入力を2回分類しても同じ結果"""
    change = FlightChange(arrival(estimated='10:40'))
    first = classify(change)
    second = classify(change)
    assert (first.status_type, first.diff) == (second.status_type, second.diff)

def test_completed_flights_excluded():
    """到着済み・出発済みの便は分類前に除外される"""
    current = [
        arrival(estimated='12:00', flight_status='Landed', flight_status_code='ARR'),
        departure(estimated='12:00', flight_status='Departed', flight_status_code='DEP'),
    ]
    assert detect_events([], current) == []


# ═══════════════════════════════════════
# 5. シナリオ
# ═══════════════════════════════════════
def test_scenario_initial_delayed_departure():
    """前回なし・出発10:00→10:35 は initial_delayed_departure"""
    notifications = process_snapshots([], [departure(scheduled='10:00', estimated='10:35')])
    assert len(notifications) == 1
    n = notifications[0]
    assert n.event.status_type is StatusType.INITIAL_DELAYED_DEPARTURE
    assert n.event.diff == 35
    assert 'expected to depart 35 minutes late' in n.tweet

def test_scenario_landed_no_event():
    """ARR の便は大きく遅れていても通知しない"""
    record = arrival(estimated='13:00', flight_status='Landed', flight_status_code='ARR')
    assert process_snapshots([], [record]) == []

def test_scenario_cancelled_after_observation():
    """通常運航だった便が欠航になると cancelled の文面を出す"""
    before = departure()
    after = departure(flight_status='Cancelled', flight_status_code='CNX')
    notifications = process_snapshots([before], [after])
    assert len(notifications) == 1
    n = notifications[0]
    assert n.event.status_type is StatusType.CANCELLED
    assert n.tweet == 'Luxair flight #LG4591 to London City #LCY at 10:00 has been cancelled.'

def test_scenario_no_repeat_when_unchanged():
    """遅延が続いていても前回と同一なら再通知しない"""
    snapshot = [departure(estimated='11:00')]
    assert len(process_snapshots([], snapshot)) == 1
    assert process_snapshots(snapshot, [departure(estimated='11:00')]) == []

def test_scenario_back_on_time_silent():
    """定刻に戻った便は通知しない"""
    assert process_snapshots([departure(estimated='11:00')], [departure(estimated='10:05')]) == []

def test_chain_board_to_notification():
    """空港HTML → 除外 → 統合 → 通知 の連鎖"""
    html = """
    <table class="fly">
      <tr><th>Destination</th></tr>
      <tr><td>Porto</td><td>TP1234</td><td></td><td>10:00</td><td>Delayed</td>
          <td>10:45</td><td>E190</td><td>TAP Portugal</td></tr>
      <tr><td>London City</td><td>LG4591</td><td></td><td>11:00</td><td>Delayed</td>
          <td>12:00</td><td>DH4</td><td>Luxair</td></tr>
    </table>
    """
    board = exclude_carriers(parse_airport_board(html, Direction.DEPARTURE), {'LG'})
    current = merge_snapshots([], board)
    notifications = process_snapshots([], current)
    assert len(notifications) == 1
    assert notifications[0].tweet == (
        'TAP Portugal flight #TP1234 to Porto is expected to depart 45 minutes late at 10:45.'
    )


# ═══════════════════════════════════════
# 実行
# ═══════════════════════════════════════
if __name__ == '__main__':
    passed = 0
    failed = 0

    def run_test(name, func):
        global passed, failed
        try:
            func()
            passed += 1
            print(f"  ✅ {name}")
        except AssertionError as e:
            failed += 1
            print(f"  ❌ {name}: {e}")
        except Exception as e:
            failed += 1
            print(f"  ❌ {name}: 例外発生 {e.__class__.__name__}: {e}")

    tests = [(name, func) for name, func in sorted(globals().items())
             if name.startswith('test_') and callable(func)]
    print("\n[照合・分類パイプライン]")
    for test_name, test_func in tests:
        run_test(test_name, test_func)

    print(f"\n{'='*50}")
    print(f"結果: {passed} 件通過, {failed} 件失敗 / 全 {passed+failed} 件")
    if failed > 0:
        print("❌ テスト失敗あり")
        sys.exit(1)
    else:
        print("✅ 全テスト通過")
