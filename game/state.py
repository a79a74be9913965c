"""Game state management.

``GameStateMachine`` owns the only mutable session record and sequences the
three engines:

    IDLE --start--> LOADING --ok--> PLAYING --solve--> SOLVING --settled--> ENDED
                       |                ^                  |
                       +--error--> FAILED     +--cancel----+
    any --new game--> LOADING

Engine calls run outside the session lock. Each call is tagged with the
session version active when it was issued; ``new_game`` and ``cancel_solve``
bump the version, and a result that comes back for an older version is
discarded. At most one call is outstanding at a time.
"""

import logging
import threading
import uuid
from typing import Callable, FrozenSet, List, Optional, Tuple

from game.evaluator import SolutionEvaluator
from game.judge import InterrogationJudge
from game.models import (
    GM_TARGET,
    AnswerType,
    ChatMessage,
    Clue,
    EndingEvaluation,
    GamePhase,
    JudgeResponse,
    MessageType,
    MysteryData,
)
from game.mystery_generator import MysteryGenerator
from game.prompts import HISTORY_WINDOW
from game.public_mystery import PublicMystery, create_public_mystery
from services.api_keys import APIKeys
from services.errors import CredentialError

logger = logging.getLogger(__name__)

GM_DISPLAY_NAME = "Game Master"
CASE_BRIEFING_SPEAKER = "Case Briefing"


class GameStateMachine:
    """Manages the state of a single game session."""

    def __init__(
        self,
        generator: MysteryGenerator,
        judge: InterrogationJudge,
        evaluator: SolutionEvaluator,
        on_credential: Optional[Callable[[APIKeys], None]] = None,
    ):
        self.generator = generator
        self.judge = judge
        self.evaluator = evaluator
        self._on_credential = on_credential

        self._lock = threading.RLock()
        self._version = 0
        self._ticket = 0
        self._processing_ticket: Optional[int] = None
        self._credential_required = False
        self._last_error: Optional[Exception] = None

        self._phase = GamePhase.IDLE
        self._mystery: Optional[MysteryData] = None
        self._messages: List[ChatMessage] = []
        self._unlocked: set = set()
        self._target = GM_TARGET
        self._theory = ""
        self._ending: Optional[EndingEvaluation] = None

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def phase(self) -> GamePhase:
        return self._phase

    @property
    def mystery(self) -> Optional[MysteryData]:
        return self._mystery

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        with self._lock:
            return tuple(self._messages)

    @property
    def unlocked_clues(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._unlocked)

    @property
    def active_target(self) -> str:
        return self._target

    @property
    def theory(self) -> str:
        return self._theory

    @property
    def ending(self) -> Optional[EndingEvaluation]:
        return self._ending

    @property
    def is_processing(self) -> bool:
        return self._processing_ticket is not None

    @property
    def credential_required(self) -> bool:
        return self._credential_required

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error

    @property
    def version(self) -> int:
        return self._version

    def unlocked_clue_list(self) -> List[Clue]:
        """Unlocked clues in mystery order."""
        with self._lock:
            if not self._mystery:
                return []
            return [c for c in self._mystery.clues if c.id in self._unlocked]

    def public_view(self) -> Optional[PublicMystery]:
        with self._lock:
            if not self._mystery:
                return None
            return create_public_mystery(
                self._mystery,
                frozenset(self._unlocked),
                reveal_solution=self._phase == GamePhase.ENDED,
            )

    # =========================================================================
    # Call bookkeeping
    # =========================================================================

    def _claim(self) -> Tuple[int, int]:
        """Mark a call as in flight. Caller holds the lock."""
        self._ticket += 1
        self._processing_ticket = self._ticket
        return self._version, self._ticket

    def _release(self, ticket: int):
        with self._lock:
            if self._processing_ticket == ticket:
                self._processing_ticket = None

    def _is_stale(self, version: int, operation: str) -> bool:
        if version != self._version:
            logger.info(
                "[GAME] Discarding stale %s result (issued v%d, now v%d)",
                operation, version, self._version,
            )
            return True
        return False

    def _credential_failure(self, error: Exception):
        """Caller holds the lock."""
        logger.error("[GAME] Credential rejected; re-authentication required")
        self._credential_required = True
        self._last_error = error
        self._phase = GamePhase.FAILED

    def _append(
        self,
        message_type: MessageType,
        content: str,
        message_id: Optional[str] = None,
        **kwargs,
    ) -> ChatMessage:
        message = ChatMessage(
            id=message_id or f"msg-{uuid.uuid4().hex[:12]}",
            type=message_type,
            content=content,
            **kwargs,
        )
        self._messages.append(message)
        return message

    # =========================================================================
    # Game lifecycle
    # =========================================================================

    def start_game(self) -> bool:
        """IDLE/FAILED -> LOADING -> PLAYING (or FAILED). Returns True on PLAYING."""
        with self._lock:
            if self._phase not in (GamePhase.IDLE, GamePhase.FAILED) or self.is_processing:
                logger.info("[GAME] start_game ignored in phase %s", self._phase.value)
                return False
            if self._credential_required:
                logger.info("[GAME] start_game blocked until a new credential is provided")
                return False
            version, ticket = self._enter_loading()
        return self._run_generation(version, ticket)

    def new_game(self) -> bool:
        """Any phase -> LOADING with a full reset. Supersedes in-flight calls."""
        with self._lock:
            version, ticket = self._enter_loading()
        return self._run_generation(version, ticket)

    def retry(self) -> bool:
        """Retry path after a failed game creation."""
        with self._lock:
            if self._phase != GamePhase.FAILED:
                return False
            if self._credential_required:
                logger.info("[GAME] Retry blocked until a new credential is provided")
                return False
            self._phase = GamePhase.IDLE
        return self.start_game()

    def provide_credential(self, keys: APIKeys):
        """Hand a fresh credential to the provider and clear the re-auth condition."""
        if self._on_credential is not None:
            self._on_credential(keys)
        with self._lock:
            self._credential_required = False
        logger.info("[GAME] Credential updated: %s", keys.get_status().get("openai"))

    def _enter_loading(self) -> Tuple[int, int]:
        """Caller holds the lock."""
        self._version += 1
        self._phase = GamePhase.LOADING
        self._mystery = None
        self._messages = []
        self._unlocked = set()
        self._target = GM_TARGET
        self._theory = ""
        self._ending = None
        self._last_error = None
        logger.info("[GAME] Loading new mystery (v%d)", self._version)
        return self._claim()

    def _run_generation(self, version: int, ticket: int) -> bool:
        try:
            mystery = self.generator.generate()
        except Exception as e:  # noqa: BLE001
            with self._lock:
                if self._is_stale(version, "generation"):
                    return False
                if isinstance(e, CredentialError):
                    self._credential_failure(e)
                else:
                    logger.error("[GAME] Mystery generation failed: %s", e)
                    self._last_error = e
                    self._phase = GamePhase.FAILED
            return False
        finally:
            self._release(ticket)

        with self._lock:
            if self._is_stale(version, "generation"):
                return False
            self._mystery = mystery
            self._append(
                MessageType.SYSTEM,
                f"[Case Summary]\n{mystery.situation}",
                message_id="init-situation",
                speaker_name=CASE_BRIEFING_SPEAKER,
                answer_type=AnswerType.CLARIFICATION,
            )
            self._phase = GamePhase.PLAYING
            logger.info("[GAME] Playing '%s' (v%d)", mystery.title, version)
        return True

    # =========================================================================
    # Interrogation
    # =========================================================================

    def select_target(self, target_id: str) -> bool:
        """Point questions at the Game Master or a living NPC."""
        with self._lock:
            if self._phase != GamePhase.PLAYING or not self._mystery:
                return False
            if target_id != GM_TARGET:
                npc = self._mystery.get_npc(target_id)
                if npc is None or not npc.is_alive:
                    logger.info("[GAME] Cannot target %r", target_id)
                    return False
            changed = target_id != self._target
            self._target = target_id
            return changed

    def unlock_clue(self, clue_id: Optional[str]) -> bool:
        """Mark a clue as discovered. Idempotent: a repeat unlock is a no-op."""
        with self._lock:
            if not self._mystery or clue_id in self._unlocked:
                return False
            clue = self._mystery.get_clue(clue_id) if clue_id else None
            if clue is None:
                return False
            self._unlocked.add(clue.id)
            self._append(
                MessageType.CLUE_ALERT,
                f"🔍 Key clue found: {clue.title}",
                message_id=f"clue-{clue.id}",
            )
            logger.info(
                "[GAME] Clue unlocked: %s (%d/%d)",
                clue.id, len(self._unlocked), len(self._mystery.clues),
            )
            return True

    def submit_input(self, text: str) -> Optional[JudgeResponse]:
        """Ask the active target a question. Only accepted while PLAYING and idle."""
        text = (text or "").strip()
        with self._lock:
            if self._phase != GamePhase.PLAYING or not self._mystery:
                logger.info("[GAME] Input rejected in phase %s", self._phase.value)
                return None
            if self.is_processing:
                logger.info("[GAME] Input rejected: a call is already in flight")
                return None
            if not text:
                return None

            mystery = self._mystery
            target = self._target
            npc = mystery.get_npc(target) if target != GM_TARGET else None
            target_name = npc.name if npc else GM_DISPLAY_NAME
            history = [m.content for m in self._messages[-HISTORY_WINDOW:]]

            self._append(MessageType.USER, text, speaker_name=f"To {target_name}")
            version, ticket = self._claim()

        try:
            response, failure = self.judge.judge_with_status(mystery, text, target, history)
        finally:
            self._release(ticket)

        with self._lock:
            if self._is_stale(version, "judgment"):
                return None
            if isinstance(failure, CredentialError):
                self._credential_failure(failure)
                return None

            if response.unlocked_clue_id:
                self.unlock_clue(response.unlocked_clue_id)
            self._append(
                MessageType.AI_RESPONSE,
                response.reply,
                answer_type=response.answer_type,
                speaker_name=target_name,
                avatar_url=npc.avatar_url if npc else None,
            )
        return response

    # =========================================================================
    # Solving
    # =========================================================================

    def request_solve(self) -> bool:
        with self._lock:
            if self._phase != GamePhase.PLAYING or self.is_processing:
                return False
            self._phase = GamePhase.SOLVING
            return True

    def cancel_solve(self) -> bool:
        """Back to investigating. Any evaluation still in flight becomes stale."""
        with self._lock:
            if self._phase != GamePhase.SOLVING:
                return False
            self._version += 1
            self._phase = GamePhase.PLAYING
            return True

    def set_theory(self, theory: str) -> bool:
        with self._lock:
            if self._phase != GamePhase.SOLVING:
                return False
            self._theory = theory or ""
            return True

    def submit_theory(self, theory: Optional[str] = None) -> Optional[EndingEvaluation]:
        """Adjudicate the final theory. SOLVING -> ENDED once the evaluator settles."""
        with self._lock:
            if self._phase != GamePhase.SOLVING or not self._mystery or self.is_processing:
                return None
            if theory is not None:
                self._theory = theory
            final_theory = self._theory.strip()
            if not final_theory:
                return None
            mystery = self._mystery
            version, ticket = self._claim()

        try:
            evaluation, failure = self.evaluator.evaluate_with_status(mystery, final_theory)
        finally:
            self._release(ticket)

        with self._lock:
            if self._is_stale(version, "evaluation"):
                return None
            if isinstance(failure, CredentialError):
                self._credential_failure(failure)
                return None
            self._ending = evaluation
            self._phase = GamePhase.ENDED
            logger.info("[GAME] Ended with %s: %s", evaluation.type.value, evaluation.title)
        return evaluation
