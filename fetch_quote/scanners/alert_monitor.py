from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..alerts.console import ConsoleNotifier
from ..alerts.ntfy import NtfyNotifier
from ..alerts.webhook import WebhookNotifier
from ..providers.base import Quote
from ..utils.http import CancelToken
from ..utils.indicators import ChronologicalBars, RSIResult, calculate_rsi
from ..utils.state_store import Alert, AlertCondition, AlertEvent, AlertStore


@dataclass
class AlertContext:
    quote: Quote
    bars: Optional[ChronologicalBars] = None
    rsi: Optional[RSIResult] = None
    avg_volume: Optional[float] = None


def weekly_change_percent(bars: ChronologicalBars | None) -> float:
    if bars is None or len(bars) < 5:
        return 0.0
    latest = bars.bars[-1]
    week_ago = bars.bars[-5]
    if week_ago.close == 0:
        return 0.0
    return (latest.close - week_ago.close) / week_ago.close * 100


def _context_rsi(condition: AlertCondition, ctx: AlertContext) -> RSIResult | None:
    period = int(condition.period or 14)
    if ctx.rsi is not None and ctx.rsi.period == period:
        return ctx.rsi
    if ctx.bars is not None:
        return calculate_rsi(ctx.bars, period)
    return ctx.rsi


def evaluate_condition(condition: AlertCondition, ctx: AlertContext) -> bool:
    kind = condition.type
    if kind == "price_above":
        return ctx.quote.price >= condition.value
    if kind == "price_below":
        return ctx.quote.price <= condition.value
    if kind == "change_percent":
        if condition.period == "week":
            change = weekly_change_percent(ctx.bars)
        else:
            change = ctx.quote.change_percent * 100
        return abs(change) >= abs(condition.value)
    if kind == "rsi_above":
        rsi = _context_rsi(condition, ctx)
        return rsi is not None and rsi.value >= condition.value
    if kind == "rsi_below":
        rsi = _context_rsi(condition, ctx)
        return rsi is not None and rsi.value <= condition.value
    if kind == "volume_spike":
        if not ctx.avg_volume:
            return False
        return ctx.quote.volume >= ctx.avg_volume * condition.multiplier
    return False


def format_condition(condition: AlertCondition) -> str:
    kind = condition.type
    if kind == "price_above":
        return f"price >= ${condition.value:g}"
    if kind == "price_below":
        return f"price <= ${condition.value:g}"
    if kind == "change_percent":
        return f"{condition.period} change >= {condition.value:g}%"
    if kind == "rsi_above":
        return f"RSI({condition.period}) >= {condition.value:g}"
    if kind == "rsi_below":
        return f"RSI({condition.period}) <= {condition.value:g}"
    return f"volume >= {condition.multiplier:g}x avg"


def create_alert_event(alert: Alert, ctx: AlertContext, now: datetime | None = None) -> AlertEvent:
    now = now or datetime.now(timezone.utc)
    message = f"Alert: {alert.symbol} - {format_condition(alert.condition)} (current: ${ctx.quote.price:.2f})"
    return AlertEvent(alert=alert, triggered_at=now.isoformat(), current_value=ctx.quote.price, message=message)


def is_in_cooldown(alert: Alert, now: datetime | None = None) -> bool:
    if not alert.last_triggered:
        return False
    try:
        last = datetime.fromisoformat(alert.last_triggered)
    except ValueError:
        return False
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return now - last < timedelta(minutes=alert.cooldown_minutes)


def check_alerts(contexts: Dict[str, AlertContext], store: AlertStore, now: datetime | None = None) -> List[AlertEvent]:
    """Evaluate enabled alerts outside their cooldown and stamp the ones that fire."""
    events: List[AlertEvent] = []
    for alert in store.list_alerts():
        if not alert.enabled or is_in_cooldown(alert, now):
            continue
        ctx = contexts.get(alert.symbol)
        if ctx is None:
            continue
        if evaluate_condition(alert.condition, ctx):
            event = create_alert_event(alert, ctx, now)
            events.append(event)
            store.update(alert.id, last_triggered=event.triggered_at)
    return events


@dataclass
class NotifierDefaults:
    ntfy_server: Optional[str] = None
    ntfy_topic: Optional[str] = None
    ntfy_priority: Optional[str] = None
    webhook_url: Optional[str] = None
    webhook_method: str = "POST"
    color: bool = True


def build_notifier(spec: Dict[str, Any], defaults: NotifierDefaults | None = None):
    defaults = defaults or NotifierDefaults()
    kind = spec.get("type", "console")
    if kind == "console":
        return ConsoleNotifier(color=defaults.color)
    if kind == "ntfy":
        return NtfyNotifier(
            topic=spec.get("topic") or defaults.ntfy_topic,
            server=spec.get("server") or defaults.ntfy_server,
            priority=spec.get("priority") or defaults.ntfy_priority,
        )
    if kind == "webhook":
        return WebhookNotifier(
            url=spec.get("url") or defaults.webhook_url,
            method=spec.get("method") or defaults.webhook_method,
            flavor=spec.get("flavor", "generic"),
            headers=spec.get("headers"),
        )
    raise ValueError(f"Unknown notifier type: {kind}")


def send_notifications(event: AlertEvent, notifiers: Iterable[Any]) -> int:
    """Deliver to every notifier; failures are logged and skipped. Returns the delivered count."""
    delivered = 0
    for notifier in notifiers:
        try:
            notifier.send(event)
            delivered += 1
        except Exception as exc:
            logging.error("Notification via %s failed for %s: %s", type(notifier).__name__, event.alert.symbol, exc)
    return delivered


class AlertMonitor:
    """
    Periodically fetches context for every symbol with an enabled alert and
    dispatches whatever fires. Stops when the cancel token is set.
    """

    def __init__(
        self,
        store: AlertStore,
        fetch_context: Callable[[str], AlertContext],
        check_interval_seconds: float = 300,
        on_alert: Callable[[AlertEvent], None] | None = None,
        notifier_defaults: NotifierDefaults | None = None,
        cancel: CancelToken | None = None,
    ):
        self.store = store
        self.fetch_context = fetch_context
        self.check_interval_seconds = check_interval_seconds
        self.on_alert = on_alert or self._dispatch
        self.notifier_defaults = notifier_defaults or NotifierDefaults()
        self.cancel = cancel or CancelToken()

    def _dispatch(self, event: AlertEvent) -> None:
        notifiers = []
        for spec in event.alert.notifiers:
            try:
                notifiers.append(build_notifier(spec, self.notifier_defaults))
            except ValueError as exc:
                logging.warning("Skipping notifier for %s: %s", event.alert.id, exc)
        send_notifications(event, notifiers)

    def run_check(self) -> List[AlertEvent]:
        symbols = sorted({a.symbol for a in self.store.list_alerts() if a.enabled})
        contexts: Dict[str, AlertContext] = {}
        for symbol in symbols:
            if self.cancel.cancelled:
                return []
            try:
                contexts[symbol] = self.fetch_context(symbol)
            except Exception as exc:
                logging.warning("Skipping alerts for %s; context fetch failed: %s", symbol, exc)

        events = check_alerts(contexts, self.store)
        for event in events:
            logging.info("Alert triggered: %s", event.message)
            self.on_alert(event)
        return events

    def run(self, max_checks: int | None = None) -> None:
        checks = 0
        while not self.cancel.cancelled:
            try:
                self.run_check()
            except Exception as exc:
                logging.exception("Alert check failed: %s", exc)
            checks += 1
            if max_checks is not None and checks >= max_checks:
                break
            if self.cancel.wait(self.check_interval_seconds):
                break

    def stop(self) -> None:
        self.cancel.cancel()
