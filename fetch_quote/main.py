from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import List, Optional

from .config import Config, MIN_WATCH_INTERVAL_SECONDS
from .output import ConsoleFormatter, JsonFormatter
from .providers.alpha_vantage import AlphaVantageProvider
from .providers.base import CacheTTL
from .providers.finnhub import FinnhubProvider
from .providers.registry import ProviderRegistry
from .scanners.alert_monitor import AlertContext, AlertMonitor, NotifierDefaults
from .scanners.portfolio import PortfolioStore, add_position, calculate_portfolio_summary, remove_position
from .scanners.quote_scanner import QuoteScanner, ScanOptions
from .scanners.watch import WatchMode, format_watch_header
from .utils.analysis import compute_metrics
from .utils.cache import FileCache, MemoryCache
from .utils.format import normalize_ticker, parse_tickers, validate_ticker
from .utils.http import BackoffConfig, CancelToken, RetryInfo
from .utils.indicators import ChronologicalBars, IndicatorConfig, calculate_rsi
from .utils.state_store import CONDITION_TYPES, AlertCondition, AlertStore, create_alert

VERSION = "2.0.0"


def log_retry(info: RetryInfo) -> None:
    logging.info("Retry %d in %.1fs (%s)", info.attempt, info.delay_ms / 1000, info.reason)


def build_registry(cfg: Config, cancel: CancelToken) -> ProviderRegistry:
    if not cfg.cache_enabled:
        cache = None
    elif cfg.cache_dir:
        cache = FileCache(cfg.cache_dir)
    else:
        cache = MemoryCache()
    common = dict(
        cache=cache,
        ttl=CacheTTL(
            quote_ms=cfg.cache_ttl_quote * 1000,
            daily_ms=cfg.cache_ttl_daily * 1000,
            news_ms=cfg.cache_ttl_news * 1000,
        ),
        backoff=BackoffConfig(
            max_retries=cfg.max_retries,
            base_delay_ms=cfg.base_delay_ms,
            factor=cfg.backoff_factor,
            max_delay_ms=cfg.max_delay_ms,
            jitter_ms=cfg.jitter_ms,
        ),
        on_retry=log_retry,
        timeout=cfg.http_timeout,
        cancel=cancel,
    )
    registry = ProviderRegistry()
    registry.register(AlphaVantageProvider(cfg.resolve_alpha_vantage_key(), **common))
    registry.register(FinnhubProvider(cfg.resolve_finnhub_key(), **common))
    registry.set_default(cfg.default_provider)
    if cfg.fallback_provider:
        registry.set_fallback(cfg.fallback_provider)
    return registry


def indicator_config(cfg: Config, args: argparse.Namespace) -> Optional[IndicatorConfig]:
    rsi, sma, macd = args.rsi, args.sma is not None, args.macd
    if args.indicators:
        rsi = sma = macd = True
    if not (rsi or sma or macd):
        return None
    periods = parse_periods(args.sma) if args.sma else cfg.sma_periods
    return IndicatorConfig(
        rsi_enabled=rsi,
        rsi_period=cfg.rsi_period,
        rsi_overbought=cfg.rsi_overbought,
        rsi_oversold=cfg.rsi_oversold,
        sma_enabled=sma,
        sma_periods=periods,
        macd_enabled=macd,
        macd_fast=cfg.macd_fast,
        macd_slow=cfg.macd_slow,
        macd_signal=cfg.macd_signal,
    )


def parse_periods(value: str) -> List[int]:
    periods = [int(p) for p in value.split(",") if p.strip()]
    if not periods or any(p < 1 for p in periods):
        raise ValueError(f"Invalid SMA periods: {value}")
    return periods


def collect_symbols(args: argparse.Namespace, cfg: Config) -> List[str]:
    symbols: List[str] = []
    if args.ticker:
        symbols.extend(parse_tickers(args.ticker))
    for raw in args.tickers:
        symbol = normalize_ticker(raw)
        if validate_ticker(symbol):
            symbols.append(symbol)
        else:
            logging.warning("Ignoring invalid ticker: %s", raw)
    if not symbols and not args.ticker and not args.tickers:
        symbols = list(cfg.watchlist)
    return list(dict.fromkeys(symbols))


def parse_alert_condition(kind: str, value: str) -> AlertCondition:
    if kind not in CONDITION_TYPES:
        raise ValueError(f"Condition must be one of: {', '.join(CONDITION_TYPES)}")
    if kind == "volume_spike":
        return AlertCondition(type=kind, multiplier=float(value))
    if kind == "change_percent" and value.endswith("w"):
        return AlertCondition(type=kind, value=float(value[:-1]), period="week")
    return AlertCondition(type=kind, value=float(value))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fetch-quote", description="Stock quotes, trading zones and technical indicators")
    parser.add_argument("tickers", nargs="*", help="Ticker symbols, e.g. AAPL MSFT")
    parser.add_argument("-t", "--ticker", help="Comma-separated tickers")
    parser.add_argument("--buy-pct", type=float, help="Buy zone width below the 52-week high, in percent")
    parser.add_argument("--sell-pct", type=float, help="Sell threshold below the 52-week high, in percent")
    parser.add_argument("-n", "--news", action="store_true", help="Show recent news per ticker")
    parser.add_argument("--top-news", action="store_true", help="Show general market headlines")
    parser.add_argument("--chart", action="store_true", help="Include recent price history")
    parser.add_argument("--indicators", action="store_true", help="Compute RSI, SMA and MACD")
    parser.add_argument("--rsi", action="store_true", help="Compute RSI")
    parser.add_argument("--sma", nargs="?", const="", default=None, help="Compute SMAs (optional comma list of periods)")
    parser.add_argument("--macd", action="store_true", help="Compute MACD")
    parser.add_argument("--watch", action="store_true", help="Refresh continuously")
    parser.add_argument("--interval", type=int, help="Watch refresh interval in seconds")
    parser.add_argument("--json", action="store_true", help="JSON output")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    parser.add_argument("--concurrency", type=int, help="Symbols fetched in parallel")
    parser.add_argument("--cache-dir", help="Persist HTTP responses in this directory")
    parser.add_argument("--no-cache", action="store_true", help="Disable response caching")
    parser.add_argument("--config", help="Path to a YAML config file")
    parser.add_argument("--no-config", action="store_true", help="Ignore config files")
    parser.add_argument("--source", choices=["alpha_vantage", "finnhub"], help="Preferred data provider")
    parser.add_argument("--portfolio", action="store_true", help="Show portfolio P&L")
    parser.add_argument("--portfolio-add", nargs=3, metavar=("SYMBOL", "SHARES", "PRICE"), help="Record a buy")
    parser.add_argument("--portfolio-remove", nargs=3, metavar=("SYMBOL", "SHARES", "PRICE"), help="Record a sell")
    parser.add_argument("--alerts", action="store_true", help="List configured alerts")
    parser.add_argument("--alert-add", nargs=3, metavar=("SYMBOL", "CONDITION", "VALUE"), help="Add an alert")
    parser.add_argument("--alert-remove", metavar="ID", help="Remove an alert")
    parser.add_argument("--monitor", action="store_true", help="Run the alert monitor")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def run_portfolio(args, cfg: Config, registry: ProviderRegistry, out) -> int:
    store = PortfolioStore(cfg.portfolio_file)
    portfolio = store.load()
    if args.portfolio_add:
        symbol, shares, price = args.portfolio_add
        add_position(portfolio, symbol, float(shares), float(price))
        store.save(portfolio)
        print(f"Added {float(shares):g} {symbol.upper()} @ {float(price):.2f}")
    if args.portfolio_remove:
        symbol, shares, price = args.portfolio_remove
        remove_position(portfolio, symbol, float(shares), float(price))
        store.save(portfolio)
        print(f"Sold {float(shares):g} {symbol.upper()} @ {float(price):.2f}")
    if args.portfolio:
        quotes = {}
        for symbol in portfolio.symbols():
            try:
                quotes[symbol] = registry.fetch_quote(symbol, preferred=args.source)
            except Exception as exc:
                logging.warning("No quote for %s: %s", symbol, exc)
        print(out.format_portfolio(calculate_portfolio_summary(portfolio, quotes)))
    return 0


def run_alerts(args, cfg: Config, registry: ProviderRegistry, cancel: CancelToken, out) -> int:
    store = AlertStore(cfg.alerts_file)
    if args.alert_add:
        symbol, kind, value = args.alert_add
        alert = create_alert(symbol, parse_alert_condition(kind, value), cooldown_minutes=cfg.alert_cooldown_minutes)
        store.add(alert)
        print(f"Added alert {alert.id}")
    if args.alert_remove:
        if not store.remove(args.alert_remove):
            print(f"Alert not found: {args.alert_remove}", file=sys.stderr)
            return 1
        print(f"Removed alert {args.alert_remove}")
    if args.alerts:
        print(out.format_alerts(store.list_alerts()))
    if args.monitor:
        def fetch_context(symbol: str) -> AlertContext:
            quote = registry.fetch_quote(symbol, preferred=args.source)
            bars = registry.fetch_daily(symbol, cfg.daily_days, preferred=args.source)
            chrono = ChronologicalBars.from_provider(bars)
            return AlertContext(
                quote=quote,
                bars=chrono,
                rsi=calculate_rsi(chrono, cfg.rsi_period),
                avg_volume=compute_metrics(bars).avg_volume_30_day,
            )

        monitor = AlertMonitor(
            store,
            fetch_context,
            check_interval_seconds=cfg.alert_check_interval_seconds,
            notifier_defaults=NotifierDefaults(
                ntfy_server=cfg.ntfy_server,
                ntfy_topic=cfg.ntfy_topic,
                ntfy_priority=cfg.ntfy_priority,
                webhook_url=cfg.webhook_url,
                webhook_method=cfg.webhook_method,
                color=cfg.color_output,
            ),
            cancel=cancel,
        )
        logging.info("Alert monitor running every %ss", cfg.alert_check_interval_seconds)
        monitor.run()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    cfg = Config.load(args.config, use_files=not args.no_config)
    cfg = cfg.with_overrides(
        buy_pct=args.buy_pct,
        sell_pct=args.sell_pct,
        concurrency=args.concurrency,
        cache_dir=args.cache_dir,
        watch_interval_seconds=args.interval,
        cache_enabled=False if args.no_cache else None,
    )
    try:
        for warning in cfg.validate():
            logging.warning(warning)
    except ValueError as exc:
        parser.error(str(exc))

    cancel = CancelToken()
    signal.signal(signal.SIGINT, lambda *_: cancel.cancel())
    registry = build_registry(cfg, cancel)
    out = JsonFormatter(pretty=args.pretty) if args.json else ConsoleFormatter(color=cfg.color_output and sys.stdout.isatty())

    try:
        if args.portfolio or args.portfolio_add or args.portfolio_remove:
            return run_portfolio(args, cfg, registry, out)
        if args.alerts or args.alert_add or args.alert_remove or args.monitor:
            return run_alerts(args, cfg, registry, cancel, out)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.top_news:
        print(out.format_news(registry.fetch_top_news(cfg.top_news_limit, preferred=args.source), "Top Market Headlines"))

    symbols = collect_symbols(args, cfg)
    if not symbols:
        if args.top_news:
            return 0
        print("No valid tickers", file=sys.stderr)
        return 1

    try:
        indicators = indicator_config(cfg, args)
    except ValueError as exc:
        parser.error(str(exc))

    options = ScanOptions(
        buy_pct=cfg.buy_pct,
        sell_pct=cfg.sell_pct,
        daily_days=cfg.daily_days,
        include_news=args.news,
        news_limit=cfg.news_limit,
        include_chart=args.chart,
        chart_days=cfg.chart_days,
        indicators=indicators,
        preferred_source=args.source,
        concurrency=cfg.concurrency,
    )
    scanner = QuoteScanner(registry, options, cancel=cancel)

    if args.watch:
        interval = max(MIN_WATCH_INTERVAL_SECONDS, cfg.watch_interval_seconds)
        watch = WatchMode(cancel)

        def show(updates) -> None:
            header = format_watch_header(watch.state.update_count, watch.state.last_update, interval)
            print(out.format_watch(updates, header), flush=True)

        watch.run(
            symbols,
            scanner.analyze_symbol,
            show,
            interval_seconds=interval,
            market_hours_only=cfg.market_hours_only,
            market_timezone=cfg.market_timezone,
        )
        return 0

    batch = scanner.scan(symbols)
    print(out.format_batch(batch))
    return 1 if not batch.tickers else 0


if __name__ == "__main__":
    sys.exit(main())
