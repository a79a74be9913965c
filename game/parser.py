"""Decode-then-validate parsing of untrusted provider payloads.

Provider output is never accessed dynamically by the game. Every field goes
through a small decoder that returns a ``Decoded`` result: the value to use
and whether it had to be defaulted. Generation payloads are repaired field by
field; judgment and evaluation payloads raise ``MalformedOutputError`` when
they cannot be trusted, and the caller substitutes its fixed fallback.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Type

from game.models import (
    GM_TARGET,
    NPC,
    AnswerType,
    Clue,
    Ending,
    EndingEvaluation,
    EndingType,
    JudgeResponse,
    MysteryData,
    NPCStatus,
)
from services.errors import MalformedOutputError

logger = logging.getLogger(__name__)

PLACEHOLDER_TITLE = "Untitled Mystery"
PLACEHOLDER_SITUATION = "The details of this case are lost in the fog."
PLACEHOLDER_SOLUTION = "The truth of this case was never recorded."
PLACEHOLDER_DIFFICULTY = "Unknown"

PLACEHOLDER_VICTIM_NAME = "Unknown Victim"
PLACEHOLDER_WITNESS_NAME = "Anonymous Witness"

DECEASED_MARKERS = {"deceased", "dead", "victim", "killed", "murdered"}


@dataclass(frozen=True)
class Decoded:
    """A decoded field value and whether it had to be defaulted."""

    value: Any
    defaulted: bool = False


@dataclass
class NormalizationReport:
    """Which fields of a generation payload had to be repaired."""

    defaulted: List[str] = field(default_factory=list)

    def note(self, path: str, decoded: Decoded) -> Any:
        if decoded.defaulted:
            self.defaulted.append(path)
        return decoded.value

    @property
    def count(self) -> int:
        return len(self.defaulted)


# =============================================================================
# PAYLOAD DECODING
# =============================================================================

def strip_markdown_json(text: str) -> str:
    """Strip markdown code fences and surrounding prose from a JSON reply."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]
        if lines and lines[-1].strip().startswith("```"):
            lines = lines[:-1]
        text = "\n".join(lines).strip()

    if not text.startswith("{"):
        start_idx = text.find("{")
        end_idx = text.rfind("}")
        if start_idx != -1 and end_idx != -1 and end_idx > start_idx:
            text = text[start_idx : end_idx + 1]

    return text.strip()


def decode_payload(raw: Any) -> Dict[str, Any]:
    """Turn a provider payload (dict or JSON text) into a dict.

    Raises:
        MalformedOutputError: the payload is not a JSON object
    """
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        text = strip_markdown_json(raw)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedOutputError(
                f"Invalid JSON from provider: {e!s}. Received: {raw[:200]}"
            ) from e
        if isinstance(data, dict):
            return data
    raise MalformedOutputError(f"Expected a JSON object, got {type(raw).__name__}")


def _lookup(data: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def decode_text(data: Dict[str, Any], keys: Tuple[str, ...], default: str) -> Decoded:
    value = _lookup(data, keys)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if isinstance(value, str) and value.strip():
        return Decoded(value.strip())
    return Decoded(default, defaulted=True)


def decode_list(data: Dict[str, Any], keys: Tuple[str, ...]) -> Decoded:
    """Decode an array of objects. Non-object items are dropped."""
    value = _lookup(data, keys)
    if not isinstance(value, list):
        return Decoded([], defaulted=True)
    items = [item for item in value if isinstance(item, dict)]
    return Decoded(items, defaulted=len(items) != len(value))


def decode_enum(value: Any, enum_cls: Type[Enum], default: Optional[Enum] = None) -> Decoded:
    """Map a provider string onto a closed enum; unknown values get ``default``."""
    if isinstance(value, str):
        candidate = value.strip()
        for member in enum_cls:
            if candidate.upper() == str(member.value).upper() or candidate.upper() == member.name:
                return Decoded(member)
    return Decoded(default, defaulted=True)


def decode_id(value: Any, prefix: str, taken: Set[str]) -> Decoded:
    """Coerce an id to a string; missing, empty or duplicate ids get a fresh one."""
    if value is not None and not isinstance(value, (dict, list)):
        candidate = str(value).strip()
        if candidate and candidate not in taken:
            taken.add(candidate)
            return Decoded(candidate)
    fresh = _fresh_id(prefix, taken)
    taken.add(fresh)
    return Decoded(fresh, defaulted=True)


def _fresh_id(prefix: str, taken: Set[str]) -> str:
    while True:
        candidate = f"{prefix}_{uuid.uuid4().hex[:8]}"
        if candidate not in taken:
            return candidate


def decode_status(value: Any) -> Decoded:
    if isinstance(value, str) and value.strip():
        lowered = value.strip().lower()
        if lowered in DECEASED_MARKERS:
            return Decoded(NPCStatus.DECEASED)
        if lowered == NPCStatus.ALIVE.value:
            return Decoded(NPCStatus.ALIVE)
    return Decoded(NPCStatus.ALIVE, defaulted=True)


# =============================================================================
# MYSTERY NORMALIZATION
# =============================================================================

def _normalize_npcs(items: List[Dict[str, Any]], report: NormalizationReport) -> List[NPC]:
    # The Game Master's target id is reserved.
    taken: Set[str] = {GM_TARGET}
    npcs: List[NPC] = []
    for index, item in enumerate(items):
        path = f"npcs[{index}]"
        npcs.append(
            NPC(
                id=report.note(f"{path}.id", decode_id(item.get("id"), "npc", taken)),
                name=report.note(
                    f"{path}.name",
                    decode_text(item, ("name",), f"{PLACEHOLDER_WITNESS_NAME} {index + 1}"),
                ),
                role=report.note(f"{path}.role", decode_text(item, ("role",), "Witness")),
                description=report.note(
                    f"{path}.description", decode_text(item, ("description",), "")
                ),
                personality=report.note(
                    f"{path}.personality", decode_text(item, ("personality",), "")
                ),
                status=report.note(f"{path}.status", decode_status(item.get("status"))),
                visual_summary=report.note(
                    f"{path}.visualSummary",
                    decode_text(item, ("visualSummary", "visual_summary"), ""),
                ),
            )
        )

    _enforce_cast(npcs, taken, report)
    return npcs


def _enforce_cast(npcs: List[NPC], taken: Set[str], report: NormalizationReport) -> None:
    """Exactly one deceased NPC, at least two alive."""
    victim_seen = False
    for index, npc in enumerate(npcs):
        if npc.status != NPCStatus.DECEASED:
            continue
        if victim_seen:
            npcs[index] = npc.model_copy(update={"status": NPCStatus.ALIVE})
            report.defaulted.append(f"npcs[{index}].status")
        victim_seen = True

    if not victim_seen:
        npcs.append(
            NPC(
                id=_take(taken, "npc"),
                name=PLACEHOLDER_VICTIM_NAME,
                role="Victim",
                description="A body found at the scene, identity uncertain.",
                status=NPCStatus.DECEASED,
            )
        )
        report.defaulted.append("npcs.victim")

    alive = sum(1 for npc in npcs if npc.is_alive)
    while alive < 2:
        alive += 1
        npcs.append(
            NPC(
                id=_take(taken, "npc"),
                name=f"{PLACEHOLDER_WITNESS_NAME} {alive}",
                role="Witness",
                description="Someone who was near the scene that night.",
                personality="Nervous and evasive. Answers briefly and only about what they saw.",
            )
        )
        report.defaulted.append("npcs.witness")


def _take(taken: Set[str], prefix: str) -> str:
    fresh = _fresh_id(prefix, taken)
    taken.add(fresh)
    return fresh


def _normalize_clues(items: List[Dict[str, Any]], report: NormalizationReport) -> List[Clue]:
    taken: Set[str] = set()
    clues: List[Clue] = []
    for index, item in enumerate(items):
        path = f"clues[{index}]"
        # Clues always start locked, whatever the provider claims.
        clues.append(
            Clue(
                id=report.note(f"{path}.id", decode_id(item.get("id"), "clue", taken)),
                title=report.note(f"{path}.title", decode_text(item, ("title",), f"Clue {index + 1}")),
                description=report.note(
                    f"{path}.description", decode_text(item, ("description",), "")
                ),
                is_locked=True,
            )
        )
    return clues


def _normalize_endings(items: List[Dict[str, Any]], report: NormalizationReport) -> List[Ending]:
    endings: List[Ending] = []
    for index, item in enumerate(items):
        path = f"endings[{index}]"
        ending_type = decode_enum(item.get("type"), EndingType)
        if ending_type.value is None:
            report.defaulted.append(f"{path}.type")
            continue
        endings.append(
            Ending(
                type=ending_type.value,
                title=report.note(f"{path}.title", decode_text(item, ("title",), "")),
                description=report.note(
                    f"{path}.description", decode_text(item, ("description",), "")
                ),
                condition=report.note(f"{path}.condition", decode_text(item, ("condition",), "")),
            )
        )
    return endings


def normalize_mystery(raw: Any) -> Tuple[MysteryData, NormalizationReport]:
    """Repair a raw generation payload into canonical mystery data.

    Never raises on malformed content: every missing or broken field is
    replaced with a placeholder and recorded in the report.
    """
    report = NormalizationReport()
    try:
        data = decode_payload(raw)
    except MalformedOutputError as e:
        logger.warning("[MYSTERY] Undecodable payload, repairing from scratch: %s", str(e)[:200])
        data = {}
        report.defaulted.append("$")

    npc_items = report.note("npcs", decode_list(data, ("npcs",)))
    clue_items = report.note("clues", decode_list(data, ("clues",)))
    ending_items = report.note("endings", decode_list(data, ("endings",)))

    mystery = MysteryData(
        title=report.note("title", decode_text(data, ("title",), PLACEHOLDER_TITLE)),
        situation=report.note("situation", decode_text(data, ("situation",), PLACEHOLDER_SITUATION)),
        solution=report.note("solution", decode_text(data, ("solution",), PLACEHOLDER_SOLUTION)),
        difficulty=report.note(
            "difficulty", decode_text(data, ("difficulty",), PLACEHOLDER_DIFFICULTY)
        ),
        npcs=_normalize_npcs(npc_items, report),
        clues=_normalize_clues(clue_items, report),
        endings=_normalize_endings(ending_items, report),
    )
    return mystery, report


# =============================================================================
# JUDGMENT / EVALUATION PARSING
# =============================================================================

def parse_judge_response(raw: Any, mystery: MysteryData) -> JudgeResponse:
    """Validate a judgment payload against the closed answer set and the clue list.

    Raises:
        MalformedOutputError: undecodable payload or no reply text
    """
    data = decode_payload(raw)
    reply = decode_text(data, ("reply",), "")
    if reply.defaulted:
        raise MalformedOutputError("Judgment payload has no reply")

    answer_type = decode_enum(
        _lookup(data, ("answerType", "answer_type")), AnswerType, AnswerType.CLARIFICATION
    ).value

    clue_id = _lookup(data, ("unlockedClueId", "unlocked_clue_id"))
    if clue_id is not None and not isinstance(clue_id, (dict, list)):
        clue_id = str(clue_id).strip()
    else:
        clue_id = None
    if not mystery.has_clue(clue_id):
        clue_id = None

    return JudgeResponse(answer_type=answer_type, reply=reply.value, unlocked_clue_id=clue_id)


def parse_evaluation(raw: Any, mystery: MysteryData) -> EndingEvaluation:
    """Validate an evaluation payload.

    Raises:
        MalformedOutputError: undecodable payload, unknown ending type, or no narrative
    """
    data = decode_payload(raw)
    ending_type = decode_enum(data.get("type"), EndingType).value
    if ending_type is None:
        raise MalformedOutputError(f"Unknown ending type: {data.get('type')!r}")

    narrative = decode_text(data, ("narrative",), "")
    if narrative.defaulted:
        raise MalformedOutputError("Evaluation payload has no narrative")

    ending = mystery.get_ending(ending_type)
    fallback_title = ending.title if ending and ending.title else ending_type.value.title()
    title = decode_text(data, ("title",), fallback_title).value

    return EndingEvaluation(type=ending_type, title=title, narrative=narrative.value)
