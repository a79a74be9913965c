"""Environment-level configuration for the mystery engine.

This module isolates things that depend on the deployment environment
(API keys, model chain, timeouts, feature flags) from pure game-domain logic.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from services.api_keys import APIKeys, masked
from services.content_provider import (
    DEFAULT_ATTEMPT_TIMEOUT,
    DEFAULT_MODELS,
    DEFAULT_OPERATION_TIMEOUT,
    ContentAdapter,
    LangChainContentProvider,
)
from services.image_service import (
    DiceBearPortraitProvider,
    HuggingFacePortraitProvider,
    PortraitProvider,
)

logger = logging.getLogger(__name__)

PORTRAIT_MODES = ("avatar", "generative", "off")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def _models_env(name: str) -> List[str]:
    raw = os.getenv(name, "")
    models = [m.strip() for m in raw.split(",") if m.strip()]
    return models or list(DEFAULT_MODELS)


@dataclass
class EnvironmentSettings:
    """Environment / deployment settings."""

    keys: APIKeys = field(default_factory=APIKeys)
    models: List[str] = field(default_factory=lambda: list(DEFAULT_MODELS))
    attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT
    operation_timeout: float = DEFAULT_OPERATION_TIMEOUT
    language: str = "English"
    portrait_mode: str = "avatar"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "EnvironmentSettings":
        """Build settings from environment variables (and a .env file)."""
        if dotenv:
            load_dotenv()

        portrait_mode = os.getenv("PORTRAIT_MODE", "avatar").strip().lower()
        if portrait_mode not in PORTRAIT_MODES:
            logger.warning("Unknown PORTRAIT_MODE=%r, using 'avatar'", portrait_mode)
            portrait_mode = "avatar"

        return cls(
            keys=APIKeys.from_env(),
            models=_models_env("MYSTERY_MODELS"),
            attempt_timeout=_float_env("MYSTERY_ATTEMPT_TIMEOUT", DEFAULT_ATTEMPT_TIMEOUT),
            operation_timeout=_float_env("MYSTERY_OPERATION_TIMEOUT", DEFAULT_OPERATION_TIMEOUT),
            language=os.getenv("MYSTERY_LANGUAGE", "").strip() or "English",
            portrait_mode=portrait_mode,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def describe(self) -> str:
        """One-line summary that is safe to log."""
        return (
            f"models={','.join(self.models)} language={self.language} "
            f"portraits={self.portrait_mode} openai_key={masked(self.keys.openai_key)}"
        )


def get_env_settings() -> EnvironmentSettings:
    """Convenience accessor for environment settings."""
    return EnvironmentSettings.from_env()


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_portrait_provider(settings: EnvironmentSettings) -> Optional[PortraitProvider]:
    if settings.portrait_mode == "off":
        return None
    if settings.portrait_mode == "generative":
        if settings.keys.has_huggingface():
            return HuggingFacePortraitProvider(settings.keys.huggingface_key)
        logger.warning("[IMG] PORTRAIT_MODE=generative but HF_TOKEN is not set; using avatars")
    return DiceBearPortraitProvider()


def build_engine(settings: Optional[EnvironmentSettings] = None):
    """Wire the adapter, portrait provider and engines into a game session."""
    from game.evaluator import SolutionEvaluator
    from game.judge import InterrogationJudge
    from game.mystery_generator import MysteryGenerator
    from game.state import GameStateMachine

    settings = settings or get_env_settings()
    logger.info("Building mystery engine: %s", settings.describe())

    provider = LangChainContentProvider(settings.keys, timeout=settings.attempt_timeout)
    adapter = ContentAdapter(
        provider,
        models=settings.models,
        attempt_timeout=settings.attempt_timeout,
        operation_timeout=settings.operation_timeout,
    )
    return GameStateMachine(
        generator=MysteryGenerator(
            adapter,
            portrait_provider=build_portrait_provider(settings),
            language=settings.language,
        ),
        judge=InterrogationJudge(adapter, language=settings.language),
        evaluator=SolutionEvaluator(adapter, language=settings.language),
        on_credential=provider.set_credential,
    )
