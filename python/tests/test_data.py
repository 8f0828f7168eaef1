from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from ta_engine.data_provider import CsvProvider, bars_to_frame, frame_to_bars
from ta_engine.feed import BarFeed, TickAggregator, validate_bars
from ta_engine.types import Bar, OutOfOrderBarError

IST = ZoneInfo("Asia/Kolkata")

CSV = """Date,Open,High,Low,Close,Volume
2024-03-05 09:16:00,100,101,99.5,100.5,1200
2024-03-05 09:15:00,99,100.2,98.8,100,1500
2024-03-05 09:17:00,100.5,100.9,100.1,100.7,900
"""


def test_csv_provider_sorts_and_localizes(tmp_path) -> None:
    path = tmp_path / "idea.csv"
    path.write_text(CSV, encoding="utf-8")
    frame = CsvProvider().fetch(path, "IDEA")

    bars = frame_to_bars(frame)
    assert len(bars) == 3
    assert bars[0].time == int(datetime(2024, 3, 5, 9, 15, tzinfo=IST).timestamp())
    assert (bars[0].open, bars[0].close, bars[0].volume) == (99.0, 100.0, 1500)
    assert validate_bars(bars) == bars


def test_csv_provider_accepts_epoch_seconds(tmp_path) -> None:
    t = int(datetime(2024, 3, 5, 9, 15, tzinfo=IST).timestamp())
    path = tmp_path / "epoch.csv"
    path.write_text(f"time,open,high,low,close\n{t},1,2,0.5,1.5\n{t + 60},1.5,2,1,1.8\n", encoding="utf-8")
    bars = frame_to_bars(CsvProvider().fetch(path, "X"))
    assert [b.time for b in bars] == [t, t + 60]
    assert bars[1].volume == 0


def test_csv_provider_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        CsvProvider().fetch(tmp_path / "missing.csv", "X")
    bad = tmp_path / "bad.csv"
    bad.write_text("Foo,Open,High,Low,Close\n1,1,1,1,1\n", encoding="utf-8")
    with pytest.raises(ValueError):
        CsvProvider().fetch(bad, "X")


def test_bars_frame_roundtrip_preserves_times() -> None:
    t = int(datetime(2024, 3, 5, 9, 15, tzinfo=IST).timestamp())
    bars = [Bar(t, 1.0, 2.0, 0.5, 1.5, 10), Bar(t + 60, 1.5, 2.5, 1.0, 2.0, 20)]
    assert frame_to_bars(bars_to_frame(bars, "X")) == bars


def test_validate_bars_rejects_out_of_order() -> None:
    with pytest.raises(OutOfOrderBarError):
        validate_bars([Bar(60, 1, 1, 1, 1), Bar(60, 1, 1, 1, 1)])


def test_bar_feed_drops_stale_bars() -> None:
    feed = BarFeed("IDEA")
    assert feed.accept(Bar(120, 1, 1, 1, 1))
    assert not feed.accept(Bar(60, 1, 1, 1, 1))
    assert feed.accept(Bar(180, 1, 1, 1, 1))
    assert (feed.accepted, feed.dropped, feed.last_time) == (2, 1, 180)


def test_tick_aggregator_drops_late_ticks_and_flushes() -> None:
    agg = TickAggregator()
    assert agg.on_tick(10.0, 1, 120) is None
    assert agg.on_tick(12.0, 2, 150) is None
    # belongs to an earlier minute
    assert agg.on_tick(99.0, 5, 100) is None
    bar = agg.flush()
    assert bar == Bar(time=120, open=10.0, high=12.0, low=10.0, close=12.0, volume=3)
    assert agg.flush() is None
