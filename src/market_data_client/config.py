from __future__ import annotations

import os
from dataclasses import dataclass

MAINNET_BASE_URL = "https://api.binance.com"
TESTNET_BASE_URL = "https://testnet.binance.vision"


class ConfigError(ValueError):
    """Invalid client configuration."""


def _parse_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off", ""):
        return False
    raise ConfigError(f"Not a boolean: {value!r}")


@dataclass(frozen=True)
class ClientConfig:
    # None => picked from `testnet`
    base_url: str | None = None
    testnet: bool = False
    timeout: float = 10.0                 # seconds, per HTTP call
    requests_per_minute: int = 1200       # request weight budget per minute
    max_retries: int = 3                  # retries, excluding the first attempt
    retries_enabled: bool = True
    backoff_base: float = 0.5             # seconds: 0.5, 1.0, 2.0, ...
    backoff_max: float = 30.0             # cap for backoff
    backoff_jitter: float = 0.0           # fraction of the delay, 0 = deterministic
    pool_maxsize: int = 10                # pooled connections kept per host

    @classmethod
    def from_env(cls, prefix: str = "BINANCE_", environ: dict[str, str] | None = None) -> ClientConfig:
        """
        Build a config from environment variables.

        Recognized (all optional): {prefix}TESTNET, {prefix}BASE_URL,
        {prefix}TIMEOUT_SECONDS, {prefix}REQUESTS_PER_MINUTE,
        {prefix}MAX_RETRIES, {prefix}ENABLE_RETRIES.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        def read(name: str, convert, key: str) -> None:
            raw = env.get(prefix + name)
            if raw is None:
                return
            try:
                kwargs[key] = convert(raw)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {prefix}{name}: {raw!r}") from e

        read("TESTNET", _parse_bool, "testnet")
        read("BASE_URL", str, "base_url")
        read("TIMEOUT_SECONDS", float, "timeout")
        read("REQUESTS_PER_MINUTE", int, "requests_per_minute")
        read("MAX_RETRIES", int, "max_retries")
        read("ENABLE_RETRIES", _parse_bool, "retries_enabled")

        config = cls(**kwargs)
        config.validate()
        return config

    def get_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        return TESTNET_BASE_URL if self.testnet else MAINNET_BASE_URL

    def validate(self) -> None:
        if self.timeout <= 0:
            raise ConfigError("Timeout must be greater than 0")
        if self.requests_per_minute <= 0:
            raise ConfigError("Requests per minute must be greater than 0")
        if self.max_retries < 0:
            raise ConfigError("max_retries must not be negative")
        if self.backoff_base < 0:
            raise ConfigError("backoff_base must not be negative")
        if self.backoff_max < self.backoff_base:
            raise ConfigError("backoff_max must be >= backoff_base")
        if self.backoff_jitter < 0:
            raise ConfigError("backoff_jitter must not be negative")
        if self.pool_maxsize <= 0:
            raise ConfigError("pool_maxsize must be greater than 0")

