"""Data providers (yfinance / CSV) and conversion to 1-minute ``Bar`` objects."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

import pandas as pd

from .types import Bar

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OhlcvFrame:
    """Standard OHLCV dataframe wrapper."""

    df: pd.DataFrame  # columns: Open, High, Low, Close, Volume; index: tz-aware datetime
    symbol: str


def _standardize_ohlcv_columns(df: pd.DataFrame) -> pd.DataFrame:
    # yfinance can return (field, ticker) MultiIndex columns
    if isinstance(df.columns, pd.MultiIndex):
        tickers = list(dict.fromkeys(df.columns.get_level_values(-1)))
        if len(tickers) == 1:
            df = df.copy()
            df.columns = df.columns.get_level_values(0)
        else:
            df = df.xs(tickers[0], axis=1, level=-1, drop_level=True)

    names = {"open": "Open", "high": "High", "low": "Low", "close": "Close", "volume": "Volume"}
    rename_map = {}
    for col in df.columns:
        c = str(col).strip().lower()
        if c in names:
            rename_map[col] = names[c]
        elif c in {"adj close", "adjclose"}:
            rename_map[col] = "AdjClose"
    df = df.rename(columns=rename_map).copy()

    if "Close" not in df.columns and "AdjClose" in df.columns:
        df = df.rename(columns={"AdjClose": "Close"})
    if "Volume" not in df.columns:
        df["Volume"] = 0.0

    required = ["Open", "High", "Low", "Close", "Volume"]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required OHLCV columns: {missing}")

    df = df[required].astype(float)
    dupes = int(df.index.duplicated(keep="last").sum())
    if dupes:
        logger.warning("dropping %d duplicate timestamps", dupes)
    df = df[~df.index.duplicated(keep="last")].sort_index()
    return df


def _localize_index(df: pd.DataFrame, timezone: str) -> pd.DataFrame:
    idx = pd.DatetimeIndex(df.index)
    idx = idx.tz_localize(timezone) if idx.tz is None else idx.tz_convert(timezone)
    df = df.copy()
    df.index = idx
    return df


class YfinanceProvider:
    """Fetch data from yfinance.

    Notes:
    - 1-minute bars are only available for the last few weeks.
    - NSE symbols carry the '.NS' suffix (e.g. 'IDEA.NS').
    """

    def fetch(
        self,
        symbol: str,
        start: str,
        end: str,
        interval: str = "1m",
        auto_adjust: bool = False,
        timezone: str = "Asia/Kolkata",
    ) -> OhlcvFrame:
        import yfinance as yf  # optional dependency

        df = yf.download(
            tickers=symbol,
            start=start,
            end=end,
            interval=interval,
            auto_adjust=auto_adjust,
            progress=False,
        )
        if df is None or len(df) == 0:
            raise RuntimeError(f"yfinance returned empty data for symbol={symbol}")

        df = _standardize_ohlcv_columns(df)
        return OhlcvFrame(df=_localize_index(df, timezone), symbol=symbol)


class CsvProvider:
    """Load OHLCV data from a CSV file.

    The datetime column may hold date strings (naive values are taken as
    session-local) or epoch seconds.
    """

    def fetch(
        self,
        csv_path: str | Path,
        symbol: str,
        datetime_col: str = "Date",
        timezone: str = "Asia/Kolkata",
    ) -> OhlcvFrame:
        path = Path(csv_path)
        if not path.exists():
            raise FileNotFoundError(str(path))

        df = pd.read_csv(path)
        if datetime_col not in df.columns:
            for cand in ["Datetime", "datetime", "timestamp", "Time", "time", "date"]:
                if cand in df.columns:
                    datetime_col = cand
                    break

        if datetime_col not in df.columns:
            raise ValueError(f"CSV must contain a datetime column. Tried '{datetime_col}' and common aliases.")

        col = df[datetime_col]
        if pd.api.types.is_numeric_dtype(col):
            df[datetime_col] = pd.to_datetime(col.astype("int64"), unit="s", utc=True)
        else:
            df[datetime_col] = pd.to_datetime(col)
        df = df.set_index(datetime_col).sort_index()

        df = _standardize_ohlcv_columns(df)
        return OhlcvFrame(df=_localize_index(df, timezone), symbol=symbol)


def frame_to_bars(frame: OhlcvFrame) -> List[Bar]:
    """Convert to ``Bar`` objects with epoch-second timestamps."""
    df = frame.df
    idx = pd.DatetimeIndex(df.index)
    if idx.tz is None:
        raise ValueError("OHLCV index must be timezone-aware")
    times = (idx.tz_convert("UTC").tz_localize(None) - pd.Timestamp("1970-01-01")) // pd.Timedelta(seconds=1)
    return [
        Bar(time=int(t), open=float(o), high=float(h), low=float(l), close=float(c), volume=int(v))
        for t, o, h, l, c, v in zip(
            times, df["Open"], df["High"], df["Low"], df["Close"], df["Volume"].fillna(0)
        )
    ]


def bars_to_frame(bars: Sequence[Bar], symbol: str, timezone: str = "Asia/Kolkata") -> OhlcvFrame:
    df = pd.DataFrame(
        {
            "Open": [b.open for b in bars],
            "High": [b.high for b in bars],
            "Low": [b.low for b in bars],
            "Close": [b.close for b in bars],
            "Volume": [float(b.volume) for b in bars],
        },
        index=pd.to_datetime([b.time for b in bars], unit="s", utc=True).tz_convert(timezone),
    )
    return OhlcvFrame(df=df, symbol=symbol)
