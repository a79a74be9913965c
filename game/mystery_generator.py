"""Mystery generation logic.

A single structured-output request through the model fallback chain, then
field-level repair of whatever came back, then parallel portraits:

    prompt  ->  ContentAdapter (gpt-4o -> gpt-4o-mini -> ...)
            ->  normalize_mystery (defaults, forced clue locks, cast invariant)
            ->  assign_portraits (one independent request per NPC)

Generation never fails on malformed output. It fails only when the text step
itself fails (credential, exhaustion, fatal).
"""

import logging
import time
from typing import Optional

from game.models import MysteryData
from game.parser import normalize_mystery
from game.prompts import MYSTERY_SCHEMA, build_mystery_messages
from services.content_provider import ContentAdapter
from services.image_service import PortraitProvider, assign_portraits

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "English"
GENERATION_TEMPERATURE = 0.85


class MysteryGenerator:
    """Builds a validated mystery world for one session."""

    def __init__(
        self,
        adapter: ContentAdapter,
        portrait_provider: Optional[PortraitProvider] = None,
        language: str = DEFAULT_LANGUAGE,
        temperature: float = GENERATION_TEMPERATURE,
    ):
        self.adapter = adapter
        self.portrait_provider = portrait_provider
        self.language = language
        self.temperature = temperature

    def generate(self) -> MysteryData:
        """Generate a complete mystery.

        Raises:
            CredentialError, ExhaustionError, FatalError: from the text step only
        """
        t_start = time.perf_counter()
        logger.info("[MYSTERY] Generating mystery (language=%s)...", self.language)

        raw = self.adapter.generate(
            build_mystery_messages(self.language),
            output_schema=MYSTERY_SCHEMA,
            temperature=self.temperature,
        )
        t_text = time.perf_counter()

        mystery, report = normalize_mystery(raw)
        if report.count:
            logger.warning(
                "[MYSTERY] Repaired %d field(s): %s",
                report.count, ", ".join(report.defaulted[:10]),
            )

        assign_portraits(mystery, self.portrait_provider)
        t_end = time.perf_counter()

        logger.info(
            "[MYSTERY] '%s' ready: %d NPCs, %d clues, %d endings (text %.2fs, portraits %.2fs)",
            mystery.title,
            len(mystery.npcs),
            len(mystery.clues),
            len(mystery.endings),
            t_text - t_start,
            t_end - t_text,
        )
        return mystery
