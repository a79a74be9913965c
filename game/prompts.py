"""Prompt templates and output-shape schemas for the three engines."""

import json
from typing import Any, Dict, List, Optional, Sequence

from langchain_core.messages import BaseMessage
from langchain_core.prompts import ChatPromptTemplate

from game.models import NPC, AnswerType, EndingType, MysteryData

HISTORY_WINDOW = 5
EVALUATION_MAX_WORDS = 100


# =============================================================================
# OUTPUT SCHEMAS
# =============================================================================

MYSTERY_SCHEMA: Dict[str, Any] = {
    "title": "MysteryData",
    "description": "A lateral-thinking detective mystery with characters, clues and endings.",
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "situation": {"type": "string", "description": "The initial known scenario."},
        "solution": {"type": "string", "description": "The complete hidden truth."},
        "difficulty": {"type": "string"},
        "npcs": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "name": {"type": "string"},
                    "role": {"type": "string"},
                    "description": {"type": "string"},
                    "personality": {
                        "type": "string",
                        "description": "How this NPC speaks and acts.",
                    },
                    "status": {"type": "string", "enum": ["alive", "deceased"]},
                    "visualSummary": {
                        "type": "string",
                        "description": (
                            "A detailed visual description of the character's face and "
                            "clothing in English. Used for generating a portrait."
                        ),
                    },
                },
            },
        },
        "clues": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "isLocked": {"type": "boolean", "description": "Always true initially."},
                },
            },
        },
        "endings": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": [t.value for t in EndingType]},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "condition": {"type": "string"},
                },
            },
        },
    },
    "required": ["title", "situation", "solution", "difficulty", "npcs", "clues", "endings"],
}

JUDGE_SCHEMA: Dict[str, Any] = {
    "title": "JudgeResponse",
    "description": "The resolution of one player question.",
    "type": "object",
    "properties": {
        "answerType": {"type": "string", "enum": [t.value for t in AnswerType]},
        "reply": {"type": "string", "description": "The response text."},
        "unlockedClueId": {
            "type": ["string", "null"],
            "description": "The ID of a clue clearly revealed, or null.",
        },
    },
    "required": ["answerType", "reply"],
}

EVALUATION_SCHEMA: Dict[str, Any] = {
    "title": "EndingEvaluation",
    "description": "The ending reached by the player's final theory.",
    "type": "object",
    "properties": {
        "type": {"type": "string", "enum": [t.value for t in EndingType]},
        "title": {"type": "string", "description": "Ending title."},
        "narrative": {"type": "string", "description": "The ending story."},
    },
    "required": ["type", "title", "narrative"],
}


# =============================================================================
# MYSTERY GENERATION
# =============================================================================

MYSTERY_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            """You are a writer of dark 'Lateral Thinking' detective mysteries, the kind of
puzzle where players uncover a strange truth by asking careful questions.

Generate ONE complete mystery:

1. **Situation**: A mysterious, dark, or suspenseful scenario. State only what is
   publicly known.
2. **Solution**: The complete hidden truth that explains every strange detail.
3. **NPCs**: Exactly one NPC with status "deceased" (the victim) and at least two
   NPCs with status "alive" (witnesses, suspects, experts).
   - Every NPC needs a distinct personality describing how they speak and act.
   - One living NPC might be lying or hiding something.
   - Every NPC needs a 'visualSummary' written in English for portrait generation.
   - Give every NPC a short unique id such as "npc_1".
4. **Clues**: 4-5 specific facts that players can discover by asking the right
   questions. Give every clue a short unique id such as "c1".
5. **Endings**: exactly three, one of each type:
   - BAD: the player accuses the wrong person or misses the point entirely.
   - NEUTRAL: the player finds the culprit but misses the motive or method.
   - GOOD: the player uncovers the complete truth (the Solution).
   Each ending needs a 'condition' explaining when it applies.

Language: every text field must be written in {language}, EXCEPT 'visualSummary'
which must always be in English.

CRITICAL: Return ONLY valid JSON. Do NOT wrap it in markdown code blocks.""",
        ),
        ("human", "Generate a new mystery."),
    ]
)


def build_mystery_messages(language: str) -> List[BaseMessage]:
    return MYSTERY_PROMPT.format_messages(language=language)


# =============================================================================
# INTERROGATION
# =============================================================================

JUDGE_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            """You are the referee of a lateral-thinking detective game. You know the
whole truth and must never reveal it outright.

Current Mystery: "{title}"
Situation: {situation}
Truth: {solution}

Available Clues (id and description): {clues}

TARGET: {target}
{target_rules}

Language: {language}.

Task:
1. If the target is the Game Master: answer YES, NO, IRRELEVANT, or HINT
   following lateral-thinking rules. Keep the reply short.
2. If the target is an NPC: roleplay the reply in character and use answerType
   "NPC_DIALOGUE". The NPC only knows what their role would know.
3. CRITICAL: check whether the player's question or your answer reveals one of
   the Available Clues.
   - If a SPECIFIC clue is clearly revealed, return its id in 'unlockedClueId'.
   - Do not unlock a clue when the player is just guessing vaguely.
   - Otherwise set 'unlockedClueId' to null.

Return ONLY valid JSON with answerType, reply and unlockedClueId.""",
        ),
        ("human", 'Recent conversation:\n{history}\n\nPlayer: "{utterance}"'),
    ]
)


def _clue_pairs(mystery: MysteryData) -> str:
    return json.dumps(
        [{"id": clue.id, "desc": clue.description} for clue in mystery.clues],
        ensure_ascii=False,
    )


def build_judge_messages(
    mystery: MysteryData,
    utterance: str,
    target_npc: Optional[NPC],
    recent_history: Sequence[str],
    language: str,
) -> List[BaseMessage]:
    if target_npc is None:
        target = "The Game Master (an omniscient spirit)"
        target_rules = "Answer as the Game Master."
    else:
        target = f"NPC: {target_npc.name} ({target_npc.role})"
        target_rules = (
            f"NPC Personality: {target_npc.personality}\n"
            "NPC Knowledge: respond based only on what this character knows."
        )

    history = [str(item) for item in list(recent_history)[-HISTORY_WINDOW:]]
    return JUDGE_PROMPT.format_messages(
        title=mystery.title,
        situation=mystery.situation,
        solution=mystery.solution,
        clues=_clue_pairs(mystery),
        target=target,
        target_rules=target_rules,
        language=language,
        history="\n".join(f"- {line}" for line in history) or "(none)",
        utterance=utterance,
    )


# =============================================================================
# SOLUTION EVALUATION
# =============================================================================

EVALUATION_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            """You are the judge at the end of a detective mystery. The player is
submitting their final theory for "{title}".

Real Solution: {solution}

Possible Endings:
{endings}

Language: {language}.

Task:
1. Compare the theory to the Solution and the ending conditions.
2. Select the most appropriate ending type (GOOD, NEUTRAL or BAD).
3. Write a short narrative conclusion (max {max_words} words) based on the
   selected ending's description.

Return ONLY valid JSON with type, title and narrative.""",
        ),
        ("human", 'Player\'s Theory: "{theory}"'),
    ]
)


def _ending_lines(mystery: MysteryData) -> str:
    lines = []
    for ending_type in EndingType:
        matches = [e for e in mystery.endings if e.type == ending_type]
        if not matches:
            lines.append(f"- {ending_type.value}: (no condition given)")
        for ending in matches:
            lines.append(
                f"- {ending_type.value}: {ending.title}\n"
                f"  Condition: {ending.condition}\n"
                f"  Description: {ending.description}"
            )
    return "\n".join(lines)


def build_evaluation_messages(
    mystery: MysteryData, theory: str, language: str
) -> List[BaseMessage]:
    return EVALUATION_PROMPT.format_messages(
        title=mystery.title,
        solution=mystery.solution,
        endings=_ending_lines(mystery),
        language=language,
        max_words=EVALUATION_MAX_WORDS,
        theory=theory,
    )
