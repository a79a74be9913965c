"""Data models for the mystery game."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Sentinel target id for the omniscient narrator
GM_TARGET = "GM"


class GamePhase(str, Enum):
    IDLE = "IDLE"
    LOADING = "LOADING"
    PLAYING = "PLAYING"
    SOLVING = "SOLVING"  # Player is writing a final theory
    ENDED = "ENDED"  # Game finished with a specific ending
    FAILED = "FAILED"


class NPCStatus(str, Enum):
    ALIVE = "alive"
    DECEASED = "deceased"


class EndingType(str, Enum):
    GOOD = "GOOD"
    NEUTRAL = "NEUTRAL"
    BAD = "BAD"


class AnswerType(str, Enum):
    YES = "YES"
    NO = "NO"
    IRRELEVANT = "IRRELEVANT"
    HINT = "HINT"
    CLARIFICATION = "CLARIFICATION"
    NPC_DIALOGUE = "NPC_DIALOGUE"


class MessageType(str, Enum):
    USER = "user"
    AI_RESPONSE = "ai_response"
    SYSTEM = "system"
    CLUE_ALERT = "clue_alert"


class NPC(BaseModel):
    """A character involved in the case."""

    id: str
    name: str
    role: str = Field(default="", description="e.g. 'Witness', 'Suspect'")
    description: str = ""
    personality: str = Field(default="", description="How this NPC speaks and acts")
    status: NPCStatus = NPCStatus.ALIVE
    visual_summary: str = Field(
        default="",
        description="English visual description, used only for portraiture",
    )
    avatar_url: Optional[str] = None

    @property
    def is_alive(self) -> bool:
        return self.status == NPCStatus.ALIVE


class Clue(BaseModel):
    """A discoverable fact. Unlocking is tracked by the session, not here."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    is_locked: bool = True


class Ending(BaseModel):
    """One of the possible conclusions to the case."""

    model_config = ConfigDict(frozen=True)

    type: EndingType
    title: str = ""
    description: str = Field(default="", description="Narrative text for this ending")
    condition: str = Field(default="", description="When the evaluator should pick it")


class MysteryData(BaseModel):
    """Complete mystery scenario, created once per session."""

    title: str
    situation: str = Field(description="The initial known scenario")
    solution: str = Field(description="The complete hidden truth")
    difficulty: str
    npcs: List[NPC] = Field(default_factory=list)
    clues: List[Clue] = Field(default_factory=list)
    endings: List[Ending] = Field(default_factory=list)

    def get_npc(self, npc_id: str) -> Optional[NPC]:
        for npc in self.npcs:
            if npc.id == npc_id:
                return npc
        return None

    def get_clue(self, clue_id: str) -> Optional[Clue]:
        for clue in self.clues:
            if clue.id == clue_id:
                return clue
        return None

    def has_clue(self, clue_id: Optional[str]) -> bool:
        return clue_id is not None and self.get_clue(clue_id) is not None

    def get_ending(self, ending_type: EndingType) -> Optional[Ending]:
        for ending in self.endings:
            if ending.type == ending_type:
                return ending
        return None

    @property
    def victim(self) -> Optional[NPC]:
        for npc in self.npcs:
            if npc.status == NPCStatus.DECEASED:
                return npc
        return None

    @property
    def witnesses(self) -> List[NPC]:
        """NPCs that can be interrogated."""
        return [npc for npc in self.npcs if npc.is_alive]


class ChatMessage(BaseModel):
    """One entry in the append-only message log."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: MessageType
    content: str
    answer_type: Optional[AnswerType] = None
    speaker_name: Optional[str] = Field(default=None, description="GM or NPC name")
    avatar_url: Optional[str] = None


class JudgeResponse(BaseModel):
    """Resolution of one player utterance."""

    model_config = ConfigDict(frozen=True)

    answer_type: AnswerType
    reply: str
    unlocked_clue_id: Optional[str] = None


class EndingEvaluation(BaseModel):
    """The ending reached by the player's final theory."""

    model_config = ConfigDict(frozen=True)

    type: EndingType
    title: str
    narrative: str
