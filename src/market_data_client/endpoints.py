from __future__ import annotations

# Spot REST v3 paths
TICKER_PRICE = "/api/v3/ticker/price"
TICKER_24H = "/api/v3/ticker/24hr"
KLINES = "/api/v3/klines"
DEPTH = "/api/v3/depth"
TRADES = "/api/v3/trades"
EXCHANGE_INFO = "/api/v3/exchangeInfo"
TIME = "/api/v3/time"
PING = "/api/v3/ping"

# Request weights as published by the exchange
TICKER_PRICE_WEIGHT = 2
TICKER_PRICE_ALL_WEIGHT = 4
TICKER_24H_WEIGHT = 2
TICKER_24H_ALL_WEIGHT = 80
KLINES_WEIGHT = 2
TRADES_WEIGHT = 25
EXCHANGE_INFO_WEIGHT = 20
TIME_WEIGHT = 1
PING_WEIGHT = 1

# (max limit, weight), ascending
_DEPTH_WEIGHTS = ((100, 5), (500, 25), (1000, 50), (5000, 250))

MAX_DEPTH_LIMIT = _DEPTH_WEIGHTS[-1][0]
MAX_KLINES_LIMIT = 1000
MAX_TRADES_LIMIT = 1000


def depth_weight(limit: int) -> int:
    if limit < 1 or limit > MAX_DEPTH_LIMIT:
        raise ValueError(f"Depth limit must be between 1 and {MAX_DEPTH_LIMIT}, got {limit}")
    for max_limit, weight in _DEPTH_WEIGHTS:
        if limit <= max_limit:
            return weight
    return _DEPTH_WEIGHTS[-1][1]
