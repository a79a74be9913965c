"""Portrait service for NPC avatars.

Two providers share one boundary (``portrait_for(npc) -> Optional[str]``):
1. Avatar mode (default): deterministic DiceBear URL keyed by NPC id and name.
   No network call, never fails.
2. Generative mode: HuggingFace Inference API text-to-image keyed by the
   NPC's English visual summary, returned as an inline data URI.

Portraits are always optional. ``assign_portraits`` issues one request per
NPC in parallel and a failed request simply leaves that NPC without an avatar.
"""

import base64
import hashlib
import io
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Optional
from urllib.parse import urlencode

from huggingface_hub import InferenceClient

from game.models import NPC, MysteryData

logger = logging.getLogger(__name__)

DICEBEAR_BASE_URL = "https://api.dicebear.com/9.x/personas/svg"
PORTRAIT_MODEL = "Tongyi-MAI/Z-Image-Turbo"
PORTRAIT_STYLE = (
    "A dark, atmospheric, moody portrait of a character for a mystery detective game. "
    "{summary} High quality, digital art style."
)
MAX_PORTRAIT_WORKERS = 8


class PortraitProvider(ABC):
    """Boundary for anything that can render an NPC portrait."""

    @abstractmethod
    def portrait_for(self, npc: NPC) -> Optional[str]:
        """A URL or data URI for the portrait, or None when there is none."""


class DiceBearPortraitProvider(PortraitProvider):
    """Deterministic avatar URLs; the same NPC always gets the same face."""

    def __init__(self, base_url: str = DICEBEAR_BASE_URL):
        self.base_url = base_url.rstrip("/")

    def portrait_for(self, npc: NPC) -> Optional[str]:
        seed = f"{npc.id}-{npc.name}".strip("-")
        if not seed:
            return None
        return f"{self.base_url}?{urlencode({'seed': seed})}"


class HuggingFacePortraitProvider(PortraitProvider):
    """Generative portraits from the NPC's visual summary."""

    def __init__(self, hf_token: Optional[str], model: str = PORTRAIT_MODEL):
        self.hf_token = hf_token
        self.model = model
        self._client: Optional[InferenceClient] = None
        self._cache: Dict[str, str] = {}
        self._cache_lock = threading.Lock()

    @property
    def is_available(self) -> bool:
        return bool(self.hf_token)

    @property
    def client(self) -> Optional[InferenceClient]:
        """Lazy-load the HuggingFace client."""
        if self._client is None and self.is_available:
            self._client = InferenceClient(provider="fal-ai", api_key=self.hf_token)
            logger.info("[IMG] HuggingFace InferenceClient initialized")
        return self._client

    def _cache_key(self, prompt: str) -> str:
        return hashlib.md5(prompt.encode()).hexdigest()[:12]

    def portrait_for(self, npc: NPC) -> Optional[str]:
        if not npc.visual_summary or not self.client:
            return None

        prompt = PORTRAIT_STYLE.format(summary=npc.visual_summary)
        cache_key = self._cache_key(prompt)
        with self._cache_lock:
            cached = self._cache.get(cache_key)
        if cached:
            logger.info("[IMG] Using cached portrait for %s", npc.name)
            return cached

        logger.info("[IMG] Generating portrait for %s...", npc.name)
        image = self.client.text_to_image(prompt, model=self.model, width=512, height=512)

        buffer = io.BytesIO()
        image.convert("RGB").save(buffer, format="JPEG")
        data_uri = "data:image/jpeg;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")

        with self._cache_lock:
            self._cache[cache_key] = data_uri
        return data_uri


def assign_portraits(mystery: MysteryData, provider: Optional[PortraitProvider]) -> int:
    """Give every NPC with a visual summary a portrait, in parallel.

    Each request is independent: one failure never cancels or corrupts the
    others. Returns the number of portraits assigned.
    """
    if provider is None:
        return 0

    candidates = [npc for npc in mystery.npcs if npc.visual_summary]
    if not candidates:
        return 0

    logger.info("[IMG] Requesting %d portraits in parallel...", len(candidates))
    assigned = 0
    with ThreadPoolExecutor(max_workers=min(len(candidates), MAX_PORTRAIT_WORKERS)) as executor:
        future_to_npc = {
            executor.submit(provider.portrait_for, npc): npc for npc in candidates
        }
        for future in as_completed(future_to_npc):
            npc = future_to_npc[future]
            try:
                url = future.result()
            except Exception as e:
                logger.error("[IMG] Portrait for %s failed: %s", npc.name, e)
                continue
            if url:
                npc.avatar_url = url
                assigned += 1
            else:
                logger.info("[IMG] No portrait for %s", npc.name)

    logger.info("[IMG] Assigned %d/%d portraits", assigned, len(candidates))
    return assigned
