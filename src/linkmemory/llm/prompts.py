"""
System prompt lookup.

Prompts are markdown files under ``prompts_dir``: ``<feature>.md`` or
``<feature>-<variant>.md``. When several exist for one feature the most
recently modified file is used.
"""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from loguru import logger

from linkmemory.config import get_settings
from linkmemory.errors import SystemPromptNotFoundError
from linkmemory.models.schema import AIFeature, SystemPrompt


class FilePromptStore:
    """Loads per-feature system prompts from a directory."""

    def __init__(self, prompts_dir: Optional[Path] = None):
        self.prompts_dir = Path(prompts_dir or get_settings().prompts_dir)

    def _candidates(self, feature: AIFeature) -> List[Path]:
        if not self.prompts_dir.is_dir():
            return []
        exact = self.prompts_dir / f"{feature.value}.md"
        variants = self.prompts_dir.glob(f"{feature.value}-*.md")
        return [p for p in [exact, *variants] if p.is_file()]

    def _load(self, feature: AIFeature) -> SystemPrompt:
        candidates = self._candidates(feature)
        if not candidates:
            raise SystemPromptNotFoundError(
                feature.value, f"no prompt file in {self.prompts_dir}"
            )

        path = max(candidates, key=lambda p: (p.stat().st_mtime, p.name))
        content = path.read_text(encoding="utf-8").strip()
        if not content:
            raise SystemPromptNotFoundError(feature.value, f"{path} is empty")

        logger.debug(f"Loaded system prompt from {path} ({len(content)} chars)")
        return SystemPrompt(
            feature=feature,
            text=content,
            source=str(path),
            updated_at=datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc),
        )

    async def get(self, feature: AIFeature) -> SystemPrompt:
        """
        Resolve the current prompt for a feature.

        Raises:
            SystemPromptNotFoundError: If no usable prompt is configured
        """
        return await asyncio.to_thread(self._load, feature)
