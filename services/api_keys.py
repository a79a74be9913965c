"""Credentials for the content and portrait backends.

Keys come from the environment (local development) or from whoever handles
re-authentication, and live only in memory:
1. ``OPENAI_API_KEY`` drives the text models
2. ``HF_TOKEN`` enables generative portraits
3. Keys are masked whenever they reach a log line

The credential is an opaque value. It is handed to the content adapter at
construction time; nothing here validates its format or stores it globally.
"""

import os
from typing import Dict, Optional
from dataclasses import dataclass, field


@dataclass(frozen=True)
class APIKeys:
    """Container for API keys - stored only in memory."""

    openai_key: Optional[str] = field(default=None, repr=False)
    huggingface_key: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_env(cls) -> "APIKeys":
        """Create APIKeys from environment variables."""
        return cls(
            openai_key=os.getenv("OPENAI_API_KEY") or None,
            huggingface_key=os.getenv("HF_TOKEN") or None,
        )

    def has_openai(self) -> bool:
        return bool(self.openai_key)

    def has_huggingface(self) -> bool:
        return bool(self.huggingface_key)

    def with_openai(self, key_value: Optional[str]) -> "APIKeys":
        """Return a copy carrying a caller-provided OpenAI key."""
        key_value = key_value.strip() if key_value else ""
        return APIKeys(openai_key=key_value or None, huggingface_key=self.huggingface_key)

    def get_status(self) -> Dict[str, str]:
        """Get status of each key (safe for display and logs)."""
        return {
            "openai": masked(self.openai_key),
            "huggingface": masked(self.huggingface_key),
        }


def masked(value: Optional[str]) -> str:
    """Render a key for logs without exposing it."""
    if not value:
        return "not set"
    if len(value) <= 8:
        return "set"
    return f"{value[:3]}...{value[-2:]}"
