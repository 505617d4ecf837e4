"""
Query expansion.

Enriches a raw search query with related terms from a chat model. Expansion
only ever appends to the original text, and any failure falls back to the
original text so search always proceeds.
"""

from typing import Optional

from loguru import logger

from linkmemory.config import get_settings
from linkmemory.core.retry import Deadline, bounded, retry
from linkmemory.errors import SystemPromptNotFoundError
from linkmemory.llm.client import ChatClient
from linkmemory.llm.prompts import FilePromptStore
from linkmemory.models.schema import AIFeature

EXPANSION_SEPARATOR = ", "


class QueryExpander:
    """Expands queries with a chat model under a bounded retry policy."""

    def __init__(
        self,
        chat_client: ChatClient,
        prompt_store: FilePromptStore,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
        feature: AIFeature = AIFeature.QUERY_EXPANSION,
    ):
        settings = get_settings()
        self.chat_client = chat_client
        self.prompt_store = prompt_store
        self.max_attempts = max_attempts or settings.expansion_max_attempts
        self.retry_delay = settings.expansion_retry_delay if retry_delay is None else retry_delay
        self.temperature = settings.expansion_temperature if temperature is None else temperature
        self.timeout = timeout if timeout is not None else settings.llm_timeout
        self.feature = feature

    async def expand_with_prompt(
        self,
        raw_text: str,
        system_prompt: str,
        deadline: Optional[Deadline] = None,
    ) -> str:
        """
        Run one expansion call with a known system prompt.

        Returns ``raw_text`` unchanged when the model answers with nothing,
        otherwise ``raw_text + ", " + expansion``. Model errors propagate.
        """
        expanded = await bounded(
            self.chat_client.complete(system_prompt, raw_text, self.temperature),
            deadline=deadline,
            timeout=self.timeout,
        )
        expanded = (expanded or "").strip()

        if not expanded:
            logger.bind(feature=self.feature.value, text=raw_text).warning(
                "No expanded text received from model, returning original text"
            )
            return raw_text

        return raw_text + EXPANSION_SEPARATOR + expanded

    async def _attempt(self, raw_text: str, deadline: Optional[Deadline]) -> str:
        prompt = await self.prompt_store.get(self.feature)
        return await self.expand_with_prompt(raw_text, prompt.text, deadline)

    async def expand(self, raw_text: str, deadline: Optional[Deadline] = None) -> str:
        """
        Expand a query, never raising.

        Both the prompt lookup and the model call are retried up to
        ``max_attempts`` times; if every attempt fails the original text is
        returned. A missing prompt is a configuration error and is not
        retried.

        Args:
            raw_text: The query as typed by the user
            deadline: Optional request deadline

        Returns:
            The expanded query, or ``raw_text`` on any failure
        """
        log = logger.bind(feature=self.feature.value, text=raw_text)
        try:
            expanded = await retry(
                lambda: self._attempt(raw_text, deadline),
                self.max_attempts,
                delay=self.retry_delay,
                deadline=deadline,
                fatal=(SystemPromptNotFoundError,),
                description="Query expansion",
            )
        except SystemPromptNotFoundError as e:
            log.error(f"Query expansion is misconfigured, using original text: {e}")
            return raw_text
        except Exception as e:
            log.error(
                f"Failed to expand query after {self.max_attempts} attempt(s), "
                f"using original text: {e}"
            )
            return raw_text

        log.debug(f"Expanded query: {expanded[:100]}")
        return expanded
