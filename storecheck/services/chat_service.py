"""
StoreCheck
Chat alert gateway (Teams-style incoming webhook).

All outbound chat HTTP calls go through this class. Cards are MessageCard
payloads built from a flat list of (name, value) facts.

Testability: pass a mock ``session`` to ChatService() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import requests
from flask import current_app

from storecheck.core.exceptions import TransientIOError

logger = logging.getLogger(__name__)

THEME_COLORS = {
    "error": "FF0000",
    "warning": "FFA500",
    "info": "0078D7",
    "success": "22C55E",
}


def build_message_card(title: str, facts: list[dict], *, summary: str | None = None,
                       subtitle: str | None = None, level: str = "warning") -> dict:
    """Return a MessageCard payload for ``facts`` = [{"name": ..., "value": ...}]."""
    return {
        "@type": "MessageCard",
        "@context": "https://schema.org/extensions",
        "summary": summary or title,
        "themeColor": THEME_COLORS.get(level, THEME_COLORS["warning"]),
        "title": title,
        "sections": [
            {
                "activityTitle": subtitle or title,
                "activitySubtitle": datetime.now(timezone.utc).strftime("%d/%m/%Y %H:%M UTC"),
                "facts": [{"name": f["name"], "value": str(f["value"])} for f in facts],
            }
        ],
    }


class ChatService:
    """Webhook gateway; the URL comes from CHAT_WEBHOOK_URL."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("CHAT_WEBHOOK_URL"))

    def post_card(self, title: str, facts: list[dict], *, summary: str | None = None,
                  subtitle: str | None = None, level: str = "warning") -> bool:
        """Post one card. Returns False when no webhook is configured.

        Raises:
            TransientIOError: network failure or non-2xx response.
        """
        url = current_app.config.get("CHAT_WEBHOOK_URL")
        if not url:
            logger.warning("CHAT_WEBHOOK_URL not configured, skipping chat alert: %s", title)
            return False

        payload = build_message_card(title, facts, summary=summary, subtitle=subtitle, level=level)
        timeout = current_app.config.get("CHAT_TIMEOUT_SECONDS", 10)
        try:
            resp = self.session.post(url, json=payload, timeout=timeout)
        except requests.RequestException as exc:
            raise TransientIOError(f"Chat webhook unreachable: {exc}") from exc

        if resp.status_code >= 300:
            raise TransientIOError(f"Chat webhook returned HTTP {resp.status_code}")

        logger.info("Chat alert sent: %s", title)
        return True


chat_service = ChatService()
