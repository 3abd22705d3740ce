"""Shared OpenAI client factory."""

import logging

from openai import OpenAI

from repair_desk.core.config import OPENAI_API_KEY

logger = logging.getLogger(__name__)


def get_openai_client() -> OpenAI | None:
    """Return a configured client, or None when no API key is set."""
    if not OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set. AI features are unavailable.")
        return None
    return OpenAI(api_key=OPENAI_API_KEY)


def extract_message_text(message_obj) -> str:
    content = getattr(message_obj, "content", None)
    if isinstance(content, str):
        return content.strip()

    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text_value = item.get("text")
            else:
                text_value = getattr(item, "text", None)
            if isinstance(text_value, str) and text_value.strip():
                parts.append(text_value.strip())
        return "\n".join(parts).strip()

    return ""
