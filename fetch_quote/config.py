from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

PROVIDER_IDS = ("alpha_vantage", "finnhub")
MIN_WATCH_INTERVAL_SECONDS = 15

CONFIG_SEARCH_PATHS = (
    Path("~/.fetch_quote.yaml"),
    Path("~/.fetch_quote.yml"),
    Path("~/.config/fetch_quote/config.yaml"),
    Path("~/.config/fetch_quote/config.yml"),
)


def _resolve_env(value: Any) -> Any:
    """
    Allow config values in the form ENV:VAR_NAME to be pulled from environment variables.
    """
    if isinstance(value, str) and value.startswith("ENV:"):
        env_key = value.split("ENV:", 1)[1]
        return os.getenv(env_key)
    return value


def load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return {k: _resolve_env(v) for k, v in raw.items()}


def find_config_file() -> Path | None:
    for candidate in CONFIG_SEARCH_PATHS:
        path = candidate.expanduser()
        if path.is_file():
            return path
    return None


def _read_key_file(path: str | None) -> str | None:
    if not path:
        return None
    key_path = Path(path).expanduser()
    if not key_path.is_file():
        return None
    return key_path.read_text().strip() or None


def _int_list(value: Any, default: List[int]) -> List[int]:
    if value is None:
        return list(default)
    if isinstance(value, str):
        return [int(p) for p in value.split(",") if p.strip()]
    return [int(v) for v in value]


@dataclass
class Config:
    alpha_vantage_api_key: Optional[str] = None
    finnhub_api_key: Optional[str] = None
    alpha_vantage_key_file: Optional[str] = None
    default_provider: str = "alpha_vantage"
    fallback_provider: Optional[str] = "finnhub"
    buy_pct: float = 7.0
    sell_pct: float = 8.0
    cache_enabled: bool = True
    cache_dir: Optional[str] = None
    cache_ttl_quote: int = 60
    cache_ttl_daily: int = 6 * 3600
    cache_ttl_news: int = 600
    max_retries: int = 6
    base_delay_ms: int = 800
    backoff_factor: float = 2.0
    max_delay_ms: int = 30_000
    jitter_ms: int = 400
    http_timeout: float = 10.0
    concurrency: int = 2
    daily_days: int = 365
    rsi_period: int = 14
    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0
    sma_periods: List[int] = field(default_factory=lambda: [50, 200])
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    news_limit: int = 6
    top_news_limit: int = 10
    chart_days: int = 180
    color_output: bool = True
    watch_interval_seconds: int = 60
    market_timezone: str = "America/New_York"
    market_hours_only: bool = False
    alerts_file: str = "~/.fetch_quote/alerts.json"
    alert_check_interval_seconds: int = 300
    alert_cooldown_minutes: int = 60
    ntfy_server: str = "https://ntfy.sh"
    ntfy_topic: Optional[str] = None
    ntfy_priority: Optional[str] = None
    webhook_url: Optional[str] = None
    webhook_method: str = "POST"
    portfolio_file: str = "~/.fetch_quote/portfolio.json"
    watchlist: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        d = cls()
        return cls(
            alpha_vantage_api_key=data.get("alpha_vantage_api_key") or None,
            finnhub_api_key=data.get("finnhub_api_key") or None,
            alpha_vantage_key_file=data.get("alpha_vantage_key_file"),
            default_provider=str(data.get("default_provider", d.default_provider)),
            fallback_provider=data.get("fallback_provider", d.fallback_provider),
            buy_pct=float(data.get("buy_pct", d.buy_pct)),
            sell_pct=float(data.get("sell_pct", d.sell_pct)),
            cache_enabled=bool(data.get("cache_enabled", d.cache_enabled)),
            cache_dir=data.get("cache_dir"),
            cache_ttl_quote=int(data.get("cache_ttl_quote", d.cache_ttl_quote)),
            cache_ttl_daily=int(data.get("cache_ttl_daily", d.cache_ttl_daily)),
            cache_ttl_news=int(data.get("cache_ttl_news", d.cache_ttl_news)),
            max_retries=int(data.get("max_retries", d.max_retries)),
            base_delay_ms=int(data.get("base_delay_ms", d.base_delay_ms)),
            backoff_factor=float(data.get("backoff_factor", d.backoff_factor)),
            max_delay_ms=int(data.get("max_delay_ms", d.max_delay_ms)),
            jitter_ms=int(data.get("jitter_ms", d.jitter_ms)),
            http_timeout=float(data.get("http_timeout", d.http_timeout)),
            concurrency=int(data.get("concurrency", d.concurrency)),
            daily_days=int(data.get("daily_days", d.daily_days)),
            rsi_period=int(data.get("rsi_period", d.rsi_period)),
            rsi_overbought=float(data.get("rsi_overbought", d.rsi_overbought)),
            rsi_oversold=float(data.get("rsi_oversold", d.rsi_oversold)),
            sma_periods=_int_list(data.get("sma_periods"), d.sma_periods),
            macd_fast=int(data.get("macd_fast", d.macd_fast)),
            macd_slow=int(data.get("macd_slow", d.macd_slow)),
            macd_signal=int(data.get("macd_signal", d.macd_signal)),
            news_limit=int(data.get("news_limit", d.news_limit)),
            top_news_limit=int(data.get("top_news_limit", d.top_news_limit)),
            chart_days=int(data.get("chart_days", d.chart_days)),
            color_output=bool(data.get("color_output", d.color_output)),
            watch_interval_seconds=int(data.get("watch_interval_seconds", d.watch_interval_seconds)),
            market_timezone=str(data.get("market_timezone", d.market_timezone)),
            market_hours_only=bool(data.get("market_hours_only", d.market_hours_only)),
            alerts_file=str(data.get("alerts_file", d.alerts_file)),
            alert_check_interval_seconds=int(data.get("alert_check_interval_seconds", d.alert_check_interval_seconds)),
            alert_cooldown_minutes=int(data.get("alert_cooldown_minutes", d.alert_cooldown_minutes)),
            ntfy_server=str(data.get("ntfy_server", d.ntfy_server)),
            ntfy_topic=data.get("ntfy_topic"),
            ntfy_priority=data.get("ntfy_priority"),
            webhook_url=data.get("webhook_url"),
            webhook_method=str(data.get("webhook_method", d.webhook_method)).upper(),
            portfolio_file=str(data.get("portfolio_file", d.portfolio_file)),
            watchlist=[str(s).upper() for s in data.get("watchlist") or []],
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        return cls.from_dict(load_yaml(Path(path).expanduser()))

    @classmethod
    def load(cls, path: str | Path | None = None, use_files: bool = True) -> "Config":
        """Explicit path, else the first config file found in the search paths, else defaults."""
        if path is not None:
            return cls.from_file(path)
        if use_files:
            found = find_config_file()
            if found is not None:
                logging.debug("Loading config from %s", found)
                return cls.from_file(found)
        return cls()

    def with_overrides(self, **overrides: Any) -> "Config":
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def resolve_alpha_vantage_key(self) -> str | None:
        return (
            self.alpha_vantage_api_key
            or os.getenv("ALPHA_VANTAGE_API_KEY")
            or _read_key_file(self.alpha_vantage_key_file)
        )

    def resolve_finnhub_key(self) -> str | None:
        return self.finnhub_api_key or os.getenv("FINNHUB_API_KEY")

    def validate(self) -> List[str]:
        """Raise on unusable settings; return warnings for merely odd ones."""
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.buy_pct < 0 or self.sell_pct < 0:
            raise ValueError("buy_pct and sell_pct must be non-negative")
        if self.default_provider not in PROVIDER_IDS:
            raise ValueError(f"Unknown default_provider: {self.default_provider}")
        if self.fallback_provider is not None and self.fallback_provider not in PROVIDER_IDS:
            raise ValueError(f"Unknown fallback_provider: {self.fallback_provider}")
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")

        warnings: List[str] = []
        if self.sell_pct <= self.buy_pct:
            warnings.append(
                f"sell_pct ({self.sell_pct:g}) <= buy_pct ({self.buy_pct:g}); the sell threshold sits inside the buy zone and SELL wins"
            )
        if self.macd_fast >= self.macd_slow:
            warnings.append("macd_fast should be smaller than macd_slow; MACD will be skipped")
        if self.watch_interval_seconds < MIN_WATCH_INTERVAL_SECONDS:
            warnings.append(f"watch_interval_seconds below {MIN_WATCH_INTERVAL_SECONDS}s; using {MIN_WATCH_INTERVAL_SECONDS}s")
        if not self.resolve_alpha_vantage_key() and not self.resolve_finnhub_key():
            warnings.append("No API keys configured; set ALPHA_VANTAGE_API_KEY or FINNHUB_API_KEY")
        return warnings
