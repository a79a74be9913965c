"""Final theory evaluation.

Scores the player's free-text theory against the hidden solution and the
ending conditions. A solve attempt always settles: any failure yields a fixed
BAD ending instead of an exception.
"""

import logging
from typing import Optional, Tuple

from game.models import EndingEvaluation, EndingType, MysteryData
from game.parser import parse_evaluation
from game.prompts import EVALUATION_SCHEMA, build_evaluation_messages
from services.content_provider import ContentAdapter

logger = logging.getLogger(__name__)

EVALUATION_TEMPERATURE = 0.4

EVALUATION_FALLBACK_TITLE = "Lost in the Fog"
EVALUATION_FALLBACK_NARRATIVE = (
    "Your thoughts are too tangled to reach a conclusion. "
    "The truth slips away into the dark."
)
EVALUATION_FALLBACK = EndingEvaluation(
    type=EndingType.BAD,
    title=EVALUATION_FALLBACK_TITLE,
    narrative=EVALUATION_FALLBACK_NARRATIVE,
)


class SolutionEvaluator:
    def __init__(self, adapter: ContentAdapter, language: str = "English"):
        self.adapter = adapter
        self.language = language

    def evaluate(self, mystery: MysteryData, theory: str) -> EndingEvaluation:
        evaluation, _ = self.evaluate_with_status(mystery, theory)
        return evaluation

    def evaluate_with_status(
        self, mystery: MysteryData, theory: str
    ) -> Tuple[EndingEvaluation, Optional[Exception]]:
        """Like ``evaluate`` but also reports the failure behind a fallback ending."""
        try:
            messages = build_evaluation_messages(mystery, theory, self.language)
            raw = self.adapter.generate(
                messages, output_schema=EVALUATION_SCHEMA, temperature=EVALUATION_TEMPERATURE
            )
            evaluation = parse_evaluation(raw, mystery)
        except Exception as e:  # noqa: BLE001
            logger.error("[EVAL] Evaluation failed (%s): %s", type(e).__name__, str(e)[:200])
            return EVALUATION_FALLBACK, e

        logger.info("[EVAL] Theory judged %s: %s", evaluation.type.value, evaluation.title)
        return evaluation, None
