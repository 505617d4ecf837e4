"""
Claude API client for short text generation.

Used by query expansion: a system instruction plus one user message,
answered with plain text.
"""

from typing import Optional, Protocol, runtime_checkable

from anthropic import AsyncAnthropic
from loguru import logger

from linkmemory.config import get_settings


@runtime_checkable
class ChatClient(Protocol):
    """Minimal chat interface consumed by the pipeline."""

    async def complete(
        self, system_instruction: str, user_text: str, temperature: float = 0.0
    ) -> Optional[str]:
        """Return the generated text, or None when the model produced nothing."""


class ClaudeClient:
    """
    Client for interacting with the Claude API.

    Wraps ``AsyncAnthropic`` behind the ``ChatClient`` interface.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        client: Optional[AsyncAnthropic] = None,
    ):
        """
        Initialize the Claude client.

        Args:
            api_key: Optional Anthropic API key (uses settings if not provided)
            model: Optional model id (uses settings if not provided)
            max_tokens: Optional response token cap
            client: Pre-built AsyncAnthropic client
        """
        settings = get_settings()
        self.api_key = api_key or settings.anthropic_api_key
        self.model = model or settings.expansion_model
        self.max_tokens = max_tokens or settings.expansion_max_tokens
        self.client = client or AsyncAnthropic(api_key=self.api_key)

        logger.info(f"Initialized Claude client with model: {self.model}")

    async def complete(
        self, system_instruction: str, user_text: str, temperature: float = 0.0
    ) -> Optional[str]:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=temperature,
            system=system_instruction,
            messages=[{"role": "user", "content": user_text}],
        )

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                f"API call complete. Tokens: input={usage.input_tokens}, "
                f"output={usage.output_tokens}"
            )

        parts = [
            block.text
            for block in (response.content or [])
            if getattr(block, "type", None) == "text" and block.text
        ]
        text = "".join(parts).strip()
        return text or None
