from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import requests

from ..utils.state_store import AlertEvent

FOOTER = "fetch_quote Alert System"
FLAVORS = ("generic", "slack", "discord")


def _is_up_condition(event: AlertEvent) -> bool:
    return "above" in event.alert.condition.type


def _local_ts(iso_ts: str) -> str:
    try:
        return datetime.fromisoformat(iso_ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return iso_ts


def generic_payload(event: AlertEvent) -> Dict[str, Any]:
    return {
        "type": "alert",
        "symbol": event.alert.symbol,
        "price": event.current_value,
        "condition": event.alert.condition.type.replace("_", " "),
        "message": event.message,
        "triggeredAt": event.triggered_at,
    }


def slack_payload(event: AlertEvent) -> Dict[str, Any]:
    return {
        "attachments": [
            {
                "color": "#36a64f" if _is_up_condition(event) else "#ff0000",
                "title": f"Stock Alert: {event.alert.symbol}",
                "text": event.message,
                "fields": [
                    {"title": "Price", "value": f"${event.current_value:.2f}", "short": True},
                    {"title": "Triggered", "value": _local_ts(event.triggered_at), "short": True},
                ],
                "footer": FOOTER,
            }
        ]
    }


def discord_payload(event: AlertEvent) -> Dict[str, Any]:
    return {
        "embeds": [
            {
                "title": f"Stock Alert: {event.alert.symbol}",
                "description": event.message,
                "color": 0x36A64F if _is_up_condition(event) else 0xFF0000,
                "fields": [
                    {"name": "Price", "value": f"${event.current_value:.2f}", "inline": True},
                    {"name": "Triggered", "value": _local_ts(event.triggered_at), "inline": True},
                ],
                "footer": {"text": FOOTER},
            }
        ]
    }


class WebhookNotifier:
    """
    Delivers alerts to an HTTP endpoint. ``flavor`` picks the payload shape:
    a flat JSON object, a Slack attachment or a Discord embed.
    """

    def __init__(
        self,
        url: Optional[str],
        method: str = "POST",
        flavor: str = "generic",
        headers: Dict[str, str] | None = None,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ):
        self.url = url
        self.method = method.upper()
        if self.method not in ("GET", "POST"):
            raise ValueError(f"Unsupported webhook method: {method}")
        if flavor not in FLAVORS:
            raise ValueError(f"Unknown webhook flavor: {flavor}")
        self.flavor = flavor
        self.headers = dict(headers or {})
        self.session = session or requests.Session()
        self.timeout = timeout
        if not self.url:
            logging.warning("Webhook URL not set; webhook alerts will be logged only.")

    def payload(self, event: AlertEvent) -> Dict[str, Any]:
        if self.flavor == "slack":
            return slack_payload(event)
        if self.flavor == "discord":
            return discord_payload(event)
        return generic_payload(event)

    def send(self, event: AlertEvent) -> None:
        if not self.url:
            logging.info("Webhook message (dry): %s", event.message)
            return

        payload = self.payload(event)
        try:
            if self.method == "GET":
                params = {k: str(v) for k, v in payload.items()}
                resp = self.session.get(self.url, params=params, headers=self.headers, timeout=self.timeout)
            else:
                resp = self.session.post(self.url, json=payload, headers=self.headers, timeout=self.timeout)
            resp.raise_for_status()
        except Exception as exc:
            logging.error("Failed to send webhook alert: %s", exc, exc_info=False)
            raise
