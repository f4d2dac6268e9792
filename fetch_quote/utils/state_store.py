from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

ALERTS_VERSION = "1.0"
DEFAULT_ALERTS_PATH = Path("~/.fetch_quote/alerts.json")
DEFAULT_COOLDOWN_MINUTES = 60

CONDITION_TYPES = ("price_above", "price_below", "change_percent", "rsi_above", "rsi_below", "volume_spike")


@dataclass
class AlertCondition:
    type: str
    value: Optional[float] = None
    period: Optional[Any] = None  # "day" | "week" for change_percent, RSI period for rsi_*
    multiplier: Optional[float] = None

    def __post_init__(self):
        if self.type not in CONDITION_TYPES:
            raise ValueError(f"Unknown alert condition: {self.type}")
        if self.type == "volume_spike":
            if self.multiplier is None:
                self.multiplier = self.value if self.value is not None else 2.0
        elif self.value is None:
            raise ValueError(f"Condition {self.type} needs a value")
        if self.type == "change_percent" and self.period is None:
            self.period = "day"
        if self.type in ("rsi_above", "rsi_below") and self.period is None:
            self.period = 14

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AlertCondition":
        return cls(
            type=raw["type"],
            value=raw.get("value"),
            period=raw.get("period"),
            multiplier=raw.get("multiplier"),
        )


@dataclass
class Alert:
    id: str
    symbol: str
    condition: AlertCondition
    notifiers: List[Dict[str, Any]] = field(default_factory=lambda: [{"type": "console"}])
    created_at: str = ""
    enabled: bool = True
    cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES
    last_triggered: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["condition"] = self.condition.to_dict()
        return data

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Alert":
        return cls(
            id=raw["id"],
            symbol=str(raw["symbol"]).upper(),
            condition=AlertCondition.from_dict(raw["condition"]),
            notifiers=list(raw.get("notifiers") or [{"type": "console"}]),
            created_at=raw.get("created_at", ""),
            enabled=bool(raw.get("enabled", True)),
            cooldown_minutes=int(raw.get("cooldown_minutes", DEFAULT_COOLDOWN_MINUTES)),
            last_triggered=raw.get("last_triggered"),
        )


@dataclass
class AlertEvent:
    alert: Alert
    triggered_at: str
    current_value: float
    message: str


def generate_alert_id() -> str:
    return f"alert_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def create_alert(
    symbol: str,
    condition: AlertCondition,
    notifiers: List[Dict[str, Any]] | None = None,
    cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES,
) -> Alert:
    return Alert(
        id=generate_alert_id(),
        symbol=symbol.upper(),
        condition=condition,
        notifiers=notifiers or [{"type": "console"}],
        created_at=datetime.now(timezone.utc).isoformat(),
        cooldown_minutes=cooldown_minutes,
    )


class AlertStore:
    """
    Persists configured price alerts as ``{"version": "1.0", "alerts": [...]}``.
    Every mutation re-reads the file first so separate processes see each other's edits.
    """

    def __init__(self, path: str | Path = DEFAULT_ALERTS_PATH):
        self.path = Path(path).expanduser()

    def _load(self) -> List[Alert]:
        if not self.path.exists():
            return []
        with self.path.open() as f:
            raw = json.load(f) or {}
        alerts = []
        for item in raw.get("alerts", []):
            try:
                alerts.append(Alert.from_dict(item))
            except (KeyError, ValueError, TypeError) as exc:
                logging.warning("Skipping malformed alert in %s: %s", self.path, exc)
        return alerts

    def _save(self, alerts: List[Alert]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w") as f:
            json.dump({"version": ALERTS_VERSION, "alerts": [a.to_dict() for a in alerts]}, f, indent=2)

    def list_alerts(self) -> List[Alert]:
        return self._load()

    def add(self, alert: Alert) -> Alert:
        alerts = self._load()
        alerts.append(alert)
        self._save(alerts)
        return alert

    def remove(self, alert_id: str) -> bool:
        alerts = self._load()
        kept = [a for a in alerts if a.id != alert_id]
        if len(kept) == len(alerts):
            return False
        self._save(kept)
        return True

    def update(self, alert_id: str, **changes: Any) -> Alert | None:
        alerts = self._load()
        for i, alert in enumerate(alerts):
            if alert.id == alert_id:
                for key, value in changes.items():
                    if key in ("id", "created_at") or not hasattr(alert, key):
                        raise ValueError(f"Cannot update alert field: {key}")
                    setattr(alert, key, value)
                alerts[i] = alert
                self._save(alerts)
                return alert
        return None

    def get(self, alert_id: str) -> Alert | None:
        return next((a for a in self._load() if a.id == alert_id), None)

    def for_symbol(self, symbol: str) -> List[Alert]:
        symbol = symbol.upper()
        return [a for a in self._load() if a.symbol == symbol]

    def set_enabled(self, alert_id: str, enabled: bool) -> Alert | None:
        return self.update(alert_id, enabled=enabled)
