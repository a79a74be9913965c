"""Interrogation judge.

Resolves one player utterance against the hidden truth, either as the
omniscient Game Master (yes/no/irrelevant/hint) or in character as an NPC.
The judge never raises: any failure becomes the fixed "signal interference"
reply so a broken turn never blocks play.
"""

import logging
from typing import Optional, Sequence, Tuple

from game.models import GM_TARGET, AnswerType, JudgeResponse, MysteryData
from game.parser import parse_judge_response
from game.prompts import JUDGE_SCHEMA, build_judge_messages
from services.content_provider import ContentAdapter

logger = logging.getLogger(__name__)

GM_TEMPERATURE = 0.2
NPC_TEMPERATURE = 0.7

JUDGE_FALLBACK_REPLY = "The signal crackles with interference... the answer is lost. Try asking again."
JUDGE_FALLBACK = JudgeResponse(
    answer_type=AnswerType.CLARIFICATION,
    reply=JUDGE_FALLBACK_REPLY,
    unlocked_clue_id=None,
)


class InterrogationJudge:
    def __init__(self, adapter: ContentAdapter, language: str = "English"):
        self.adapter = adapter
        self.language = language

    def judge(
        self,
        mystery: MysteryData,
        utterance: str,
        target_id: str,
        recent_history: Sequence[str] = (),
    ) -> JudgeResponse:
        response, _ = self.judge_with_status(mystery, utterance, target_id, recent_history)
        return response

    def judge_with_status(
        self,
        mystery: MysteryData,
        utterance: str,
        target_id: str,
        recent_history: Sequence[str] = (),
    ) -> Tuple[JudgeResponse, Optional[Exception]]:
        """Like ``judge`` but also reports the failure that triggered the fallback."""
        target_npc = None if target_id == GM_TARGET else mystery.get_npc(target_id)
        if target_id != GM_TARGET and target_npc is None:
            logger.warning("[JUDGE] Unknown target %r, answering as the Game Master", target_id)

        temperature = GM_TEMPERATURE if target_npc is None else NPC_TEMPERATURE

        try:
            messages = build_judge_messages(
                mystery, utterance, target_npc, recent_history, self.language
            )
            raw = self.adapter.generate(messages, output_schema=JUDGE_SCHEMA, temperature=temperature)
            response = parse_judge_response(raw, mystery)
        except Exception as e:  # noqa: BLE001
            logger.error("[JUDGE] Judgment failed (%s): %s", type(e).__name__, str(e)[:200])
            return JUDGE_FALLBACK, e

        logger.info(
            "[JUDGE] %s -> %s%s",
            target_npc.name if target_npc else GM_TARGET,
            response.answer_type.value,
            f" (unlocks {response.unlocked_clue_id})" if response.unlocked_clue_id else "",
        )
        return response, None
