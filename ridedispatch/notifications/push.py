"""Expo push delivery."""
import logging
from typing import Optional

import httpx

from ridedispatch.config import settings

logger = logging.getLogger(__name__)


def is_expo_token(token: Optional[str]) -> bool:
    return bool(token) and token.startswith("ExponentPushToken")


def build_messages(tokens: list[str], title: str, body: str, data: Optional[dict] = None,
                   priority: Optional[str] = None, channel_id: Optional[str] = None) -> list[dict]:
    messages = []
    for token in tokens:
        if not is_expo_token(token):
            continue
        message = {
            "to": token,
            "sound": "default",
            "title": title,
            "body": body,
            "data": data or {"type": "RIDE_UPDATE"},
        }
        if priority:
            message["priority"] = priority
        if channel_id:
            message["channelId"] = channel_id
        messages.append(message)
    return messages


def send_push(tokens: list[str], title: str, body: str, data: Optional[dict] = None,
              priority: Optional[str] = None, channel_id: Optional[str] = None) -> int:
    """Send one message per valid token. Returns how many were handed to Expo."""
    messages = build_messages(tokens, title, body, data, priority, channel_id)
    if not messages:
        logger.debug("No valid push tokens for '%s'", title)
        return 0

    try:
        response = httpx.post(
            settings.expo_push_url,
            json=messages,
            headers={
                "Accept": "application/json",
                "Accept-encoding": "gzip, deflate",
                "Content-Type": "application/json",
            },
            timeout=settings.push_timeout_seconds,
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("Error sending push notification '%s': %s", title, e)
        return 0

    logger.info("Sent '%s' to %d device(s)", title, len(messages))
    return len(messages)
