"""
Telegram notification service for the ministry agenda.
Posts scheduler and live-event notifications to the group chat.
"""
import requests
from flask import current_app

from .notifications import Notification, format_message, to_dict


def send_telegram_message(message: str, chat_id: str = None, parse_mode: str = "HTML") -> bool:
    """
    Send a message to a Telegram chat.

    Args:
        message: The message text to send (supports HTML formatting)
        chat_id: Target chat ID (defaults to configured group chat)
        parse_mode: Parsing mode for message formatting ("HTML" or "Markdown")

    Returns:
        True if message was sent successfully, False otherwise
    """
    token = current_app.config.get("TELEGRAM_BOT_TOKEN")
    if not token:
        current_app.logger.info("Telegram: No bot token configured")
        return False

    target_chat = chat_id or current_app.config.get("TELEGRAM_CHAT_ID")
    if not target_chat:
        current_app.logger.info("Telegram: No chat ID configured")
        return False

    url = f"https://api.telegram.org/bot{token}/sendMessage"

    payload = {
        "chat_id": target_chat,
        "text": message,
        "parse_mode": parse_mode,
        "disable_web_page_preview": True,
    }

    try:
        response = requests.post(url, json=payload, timeout=10)
        response.raise_for_status()
        return True
    except requests.RequestException as e:
        current_app.logger.error(f"Telegram send error: {e}")
        return False


def send_notification(payload: Notification) -> bool:
    """Format and send a notification payload. Never raises on transport errors."""
    sent = send_telegram_message(format_message(payload))
    current_app.logger.info(f"Notification {payload.kind} sent={sent}: {to_dict(payload)}")
    return sent


def check_telegram_connection() -> dict:
    """
    Test the Telegram bot connection and return bot info.

    Returns:
        Dict with bot info or error message
    """
    token = current_app.config.get("TELEGRAM_BOT_TOKEN")
    if not token:
        return {"error": "No bot token configured"}

    url = f"https://api.telegram.org/bot{token}/getMe"

    try:
        response = requests.get(url, timeout=10)
        response.raise_for_status()
        data = response.json()
        if data.get("ok"):
            return {"success": True, "bot": data.get("result", {})}
        return {"error": data.get("description", "Unknown error")}
    except requests.RequestException as e:
        return {"error": str(e)}
