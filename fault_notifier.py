"""Telegram alerts for BMS faults."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import urllib.parse
import urllib.request
from typing import Callable, Optional

from dotenv import load_dotenv

from bmslink.models import FaultKind

logger = logging.getLogger("fault_notifier")

load_dotenv()

BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
CHAT_ID = os.getenv("TELEGRAM_CHAT_ID")

FAULT_EMOJI = {
    FaultKind.OVERVOLTAGE: "⚡",
    FaultKind.UNDERVOLTAGE: "🪫",
    FaultKind.OVERCURRENT: "⚡",
    FaultKind.OVERTEMPERATURE: "🔥",
    FaultKind.UNDERTEMPERATURE: "❄️",
    FaultKind.CELL_IMBALANCE: "⚖️",
}


def send_message(chat_id: int | str, text: str, token: Optional[str] = None) -> None:
    token = token or BOT_TOKEN
    if not token:
        raise RuntimeError("TELEGRAM_BOT_TOKEN not set")

    data = urllib.parse.urlencode(
        {
            "chat_id": chat_id,
            "text": text,
        }
    ).encode("utf-8")

    url = f"https://api.telegram.org/bot{token}/sendMessage"
    with urllib.request.urlopen(  # noqa: S310
        url,
        data=data,
        timeout=10,
    ) as resp:
        body = resp.read().decode("utf-8")
        result = json.loads(body)
        if not result.get("ok"):
            raise RuntimeError(f"Telegram send failed: {result}")


def build_fault_text(kind: FaultKind, details: Optional[str], device_name: Optional[str] = None) -> str:
    header = f"{FAULT_EMOJI.get(kind, '⚠️')} BMS warning: {kind.value}"
    parts = [header]
    if device_name:
        parts.append(f"Device: {device_name}")
    if details:
        parts.append(details)
    return "\n".join(parts)


def make_fault_notifier(
    chat_id: Optional[int | str] = None,
    token: Optional[str] = None,
    device_name: Callable[[], Optional[str]] = lambda: None,
) -> Optional[Callable[[FaultKind, Optional[str]], Optional[asyncio.Future]]]:
    """
    Build a ``(kind, details)`` callback that posts each fault to Telegram.
    Inside a running event loop the request runs in the default executor
    and the returned future completes once it is sent.
    Returns None when no bot token or chat id is configured.
    """
    token = token or BOT_TOKEN
    chat_id = chat_id or CHAT_ID
    if not token or not chat_id:
        logger.info("Telegram fault notifications disabled (no token or chat id)")
        return None

    def send(text: str) -> None:
        try:
            send_message(chat_id, text, token=token)
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Failed to send fault alert: {exc}")

    def notify(kind: FaultKind, details: Optional[str]) -> Optional[asyncio.Future]:
        text = build_fault_text(kind, details, device_name())
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            send(text)
            return None
        # Called from the session worker: keep the HTTP round trip off the loop.
        return loop.run_in_executor(None, send, text)

    return notify
