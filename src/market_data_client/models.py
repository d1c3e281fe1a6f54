from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _ms_to_dt(ms: Any) -> datetime:
    return datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class Interval(str, Enum):
    """Kline/candlestick intervals; the value is the wire format."""

    SECONDS_1 = "1s"
    MINUTES_1 = "1m"
    MINUTES_3 = "3m"
    MINUTES_5 = "5m"
    MINUTES_15 = "15m"
    MINUTES_30 = "30m"
    HOURS_1 = "1h"
    HOURS_2 = "2h"
    HOURS_4 = "4h"
    HOURS_6 = "6h"
    HOURS_8 = "8h"
    HOURS_12 = "12h"
    DAYS_1 = "1d"
    DAYS_3 = "3d"
    WEEKS_1 = "1w"
    MONTHS_1 = "1M"

    @classmethod
    def parse(cls, value: str | Interval) -> Interval:
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Invalid interval: {value!r}") from None

    @property
    def duration_ms(self) -> int:
        return _INTERVAL_MS[self]

    def __str__(self) -> str:
        return self.value


_SECOND = 1_000
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR

_INTERVAL_MS = {
    Interval.SECONDS_1: _SECOND,
    Interval.MINUTES_1: _MINUTE,
    Interval.MINUTES_3: 3 * _MINUTE,
    Interval.MINUTES_5: 5 * _MINUTE,
    Interval.MINUTES_15: 15 * _MINUTE,
    Interval.MINUTES_30: 30 * _MINUTE,
    Interval.HOURS_1: _HOUR,
    Interval.HOURS_2: 2 * _HOUR,
    Interval.HOURS_4: 4 * _HOUR,
    Interval.HOURS_6: 6 * _HOUR,
    Interval.HOURS_8: 8 * _HOUR,
    Interval.HOURS_12: 12 * _HOUR,
    Interval.DAYS_1: _DAY,
    Interval.DAYS_3: 3 * _DAY,
    Interval.WEEKS_1: 7 * _DAY,
    Interval.MONTHS_1: 30 * _DAY,
}


@dataclass(frozen=True)
class Ticker:
    symbol: str
    price: float
    timestamp: datetime = field(default_factory=_now)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Ticker:
        return cls(symbol=data["symbol"], price=float(data["price"]))


@dataclass(frozen=True)
class Ticker24h:
    symbol: str
    price_change: float
    price_change_percent: float
    weighted_avg_price: float
    prev_close_price: float
    last_price: float
    bid_price: float
    ask_price: float
    open_price: float
    high_price: float
    low_price: float
    volume: float
    quote_volume: float
    open_time: datetime
    close_time: datetime
    first_id: int
    last_id: int
    count: int

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Ticker24h:
        return cls(
            symbol=data["symbol"],
            price_change=float(data["priceChange"]),
            price_change_percent=float(data["priceChangePercent"]),
            weighted_avg_price=float(data["weightedAvgPrice"]),
            prev_close_price=float(data["prevClosePrice"]),
            last_price=float(data["lastPrice"]),
            bid_price=float(data["bidPrice"]),
            ask_price=float(data["askPrice"]),
            open_price=float(data["openPrice"]),
            high_price=float(data["highPrice"]),
            low_price=float(data["lowPrice"]),
            volume=float(data["volume"]),
            quote_volume=float(data["quoteVolume"]),
            open_time=_ms_to_dt(data["openTime"]),
            close_time=_ms_to_dt(data["closeTime"]),
            first_id=int(data["firstId"]),
            last_id=int(data["lastId"]),
            count=int(data["count"]),
        )

    @property
    def spread(self) -> float:
        return self.ask_price - self.bid_price

    @property
    def mid(self) -> float:
        return (self.bid_price + self.ask_price) / 2.0


@dataclass(frozen=True)
class Kline:
    symbol: str
    open_time: datetime
    close_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    quote_volume: float       # volume in quote asset (e.g. USDT)
    trades: int
    taker_buy_base: float
    taker_buy_quote: float
    is_closed: bool = True

    @classmethod
    def from_payload(cls, symbol: str, row: list[Any]) -> Kline:
        # [openTime, open, high, low, close, volume, closeTime,
        #  quoteVolume, trades, takerBuyBase, takerBuyQuote, ignore]
        return cls(
            symbol=symbol,
            open_time=_ms_to_dt(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
            close_time=_ms_to_dt(row[6]),
            quote_volume=float(row[7]),
            trades=int(row[8]),
            taker_buy_base=float(row[9]),
            taker_buy_quote=float(row[10]),
        )


@dataclass(frozen=True)
class PriceLevel:
    price: float
    quantity: float


@dataclass(frozen=True)
class OrderBook:
    symbol: str
    last_update_id: int
    bids: list[PriceLevel]
    asks: list[PriceLevel]
    timestamp: datetime = field(default_factory=_now)

    @classmethod
    def from_payload(cls, symbol: str, data: dict[str, Any]) -> OrderBook:
        return cls(
            symbol=symbol,
            last_update_id=int(data["lastUpdateId"]),
            bids=[PriceLevel(float(p), float(q)) for p, q in data["bids"]],
            asks=[PriceLevel(float(p), float(q)) for p, q in data["asks"]],
        )

    @property
    def best_bid(self) -> PriceLevel | None:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> PriceLevel | None:
        return self.asks[0] if self.asks else None


@dataclass(frozen=True)
class Trade:
    id: int
    symbol: str
    price: float
    quantity: float
    quote_quantity: float
    time: datetime
    is_buyer_maker: bool

    @classmethod
    def from_payload(cls, symbol: str, data: dict[str, Any]) -> Trade:
        return cls(
            id=int(data["id"]),
            symbol=symbol,
            price=float(data["price"]),
            quantity=float(data["qty"]),
            quote_quantity=float(data["quoteQty"]),
            time=_ms_to_dt(data["time"]),
            is_buyer_maker=bool(data["isBuyerMaker"]),
        )


@dataclass(frozen=True)
class SymbolInfo:
    symbol: str
    status: str
    base_asset: str
    quote_asset: str
    base_asset_precision: int
    quote_asset_precision: int
    order_types: list[str]

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> SymbolInfo:
        return cls(
            symbol=data["symbol"],
            status=data["status"],
            base_asset=data["baseAsset"],
            quote_asset=data["quoteAsset"],
            base_asset_precision=int(data["baseAssetPrecision"]),
            # older payloads call it quotePrecision
            quote_asset_precision=int(data.get("quoteAssetPrecision", data.get("quotePrecision"))),
            order_types=list(data.get("orderTypes", [])),
        )
