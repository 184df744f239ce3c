"""Generative text provider backed by the OpenAI chat completions API.

Provides:
- Streaming reply generation as an async iterator of text fragments
- One-shot conversation title generation
"""
import logging
from typing import AsyncIterator, Dict, Optional

from openai import AsyncOpenAI

from app.config import settings
from app.services.errors import AIServiceError

logger = logging.getLogger(__name__)

TITLE_MAX_WORDS = 7

TITLE_PROMPT = """You generate concise, creative and unique titles for chat conversations.
Based on the user's first message below, reply with a short title (5 to 7 words at most) that hints at the likely topic or takes a creative angle on the opening.
Avoid generic titles such as "Initial Contact" or "Greeting". If the message is very simple (for example "Hi" or "Hello"), come up with something more imaginative.
Reply with the title only, without greetings or conversational phrases.

User message: '{message}'

Title:"""


def clean_title(raw: str) -> str:
    """Strip wrapping quotes and cap the title at TITLE_MAX_WORDS words."""
    title = raw.strip()
    if len(title) >= 2 and title.startswith('"') and title.endswith('"'):
        title = title[1:-1].strip()
    words = title.split()
    if len(words) > TITLE_MAX_WORDS:
        title = " ".join(words[:TITLE_MAX_WORDS]) + "..."
    return title


class AIService:
    """Thin wrapper over AsyncOpenAI for the two calls the chat relay needs."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        title_model: Optional[str] = None,
    ):
        self._client = client
        self.model = model or settings.OPENAI_MODEL
        self.title_model = title_model or settings.OPENAI_TITLE_MODEL

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                base_url=settings.OPENAI_BASE_URL,
                timeout=settings.OPENAI_TIMEOUT,
            )
        return self._client

    def _build_message_history(
        self, prompt: str, history: list[Dict[str, str]]
    ) -> list[Dict[str, str]]:
        """History in provider format followed by the new user message."""
        messages = [{"role": msg["role"], "content": msg["content"]} for msg in history]
        messages.append({"role": "user", "content": prompt})
        return messages

    async def generate_response(
        self, prompt: str, history: Optional[list[Dict[str, str]]] = None
    ) -> AsyncIterator[str]:
        """
        Stream the assistant reply.

        Args:
            prompt: New user message
            history: Earlier {role, content} pairs in transcript order

        Yields:
            Non-empty text fragments in generation order

        Raises:
            AIServiceError: If the request or the stream fails at any point
        """
        messages = self._build_message_history(prompt, history or [])
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                stream=True,
            )
            async for chunk in stream:
                delta = chunk.choices[0].delta if chunk.choices else None
                if delta and delta.content:
                    yield delta.content
        except Exception as e:
            logger.error("AI provider stream failed: %s", e)
            raise AIServiceError("Failed to generate AI response") from e

    async def generate_chat_title(self, first_user_message: str) -> str:
        """
        Ask the title model for a short conversation title.

        Raises:
            AIServiceError: If the call fails or returns no text
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.title_model,
                messages=[
                    {"role": "user", "content": TITLE_PROMPT.format(message=first_user_message)},
                ],
            )
            raw = response.choices[0].message.content or ""
        except Exception as e:
            logger.error("AI provider title call failed: %s", e)
            raise AIServiceError("Failed to generate AI chat title") from e

        title = clean_title(raw)
        if not title:
            raise AIServiceError("AI provider returned an empty title")
        return title
