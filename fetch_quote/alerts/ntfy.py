from __future__ import annotations

import logging
from typing import List, Optional

import requests

from ..utils.state_store import AlertEvent

DEFAULT_SERVER = "https://ntfy.sh"
PRIORITIES = ("min", "low", "default", "high", "max")


class NtfyNotifier:
    """Publishes alerts to an ntfy topic (https://ntfy.sh or a self-hosted server)."""

    def __init__(
        self,
        topic: Optional[str],
        server: str | None = None,
        priority: str | None = None,
        tags: List[str] | None = None,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ):
        self.topic = topic
        self.server = (server or DEFAULT_SERVER).rstrip("/")
        self.priority = priority if priority in PRIORITIES else None
        self.tags = list(tags or [])
        self.session = session or requests.Session()
        self.timeout = timeout
        if not self.topic:
            logging.warning("ntfy topic not set; ntfy alerts will be logged only.")

    @property
    def url(self) -> str:
        return f"{self.server}/{self.topic}"

    def _headers(self, event: AlertEvent) -> dict:
        headers = {"Content-Type": "text/plain", "Title": f"Stock Alert: {event.alert.symbol}"}
        if self.priority:
            headers["Priority"] = self.priority
        tags = self.tags + ["chart_with_upwards_trend"]
        if event.alert.condition.type == "price_above":
            tags.append("green_circle")
        elif event.alert.condition.type == "price_below":
            tags.append("red_circle")
        headers["Tags"] = ",".join(tags)
        return headers

    def send(self, event: AlertEvent) -> None:
        if not self.topic:
            logging.info("ntfy message (dry): %s", event.message)
            return
        try:
            resp = self.session.post(
                self.url,
                data=event.message.encode("utf-8"),
                headers=self._headers(event),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except Exception as exc:
            logging.error("Failed to send ntfy alert: %s", exc, exc_info=False)
            raise

