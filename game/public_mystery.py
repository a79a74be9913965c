"""Public Mystery View - what the player is allowed to see.

This module provides a "sanitized" view of the mystery that:
1. Hides the solution, NPC personalities and ending conditions
2. Only lists clues the player has unlocked
3. Reveals the solution once the game has ended

The full truth remains only in the session's MysteryData.
"""

from dataclasses import dataclass, field
from typing import AbstractSet, List, Optional

from game.models import MysteryData, NPCStatus


@dataclass(frozen=True)
class PublicNPC:
    """What the player can know about an NPC (no roleplay directives)."""

    id: str
    name: str
    role: str
    description: str
    status: NPCStatus
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class PublicClue:
    """A clue that has been discovered."""

    id: str
    title: str
    description: str


@dataclass(frozen=True)
class PublicMystery:
    """The safe view of the mystery for rendering.

    It does NOT contain the solution (until revealed), NPC personalities,
    undiscovered clues or ending conditions.
    """

    title: str
    situation: str
    difficulty: str
    npcs: List[PublicNPC] = field(default_factory=list)
    discovered_clues: List[PublicClue] = field(default_factory=list)
    total_clues: int = 0
    solution: Optional[str] = None


def create_public_mystery(
    mystery: MysteryData,
    unlocked: AbstractSet[str],
    reveal_solution: bool = False,
) -> PublicMystery:
    """Create a sanitized public view from the full mystery."""
    return PublicMystery(
        title=mystery.title,
        situation=mystery.situation,
        difficulty=mystery.difficulty,
        npcs=[
            PublicNPC(
                id=npc.id,
                name=npc.name,
                role=npc.role,
                description=npc.description,
                status=npc.status,
                avatar_url=npc.avatar_url,
            )
            for npc in mystery.npcs
        ],
        # Mystery order, not discovery order
        discovered_clues=[
            PublicClue(id=clue.id, title=clue.title, description=clue.description)
            for clue in mystery.clues
            if clue.id in unlocked
        ],
        total_clues=len(mystery.clues),
        solution=mystery.solution if reveal_solution else None,
    )
