import copy
import time

import pytest

from game.models import (
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
from services.content_provider import ContentAdapter, ContentProvider

SAMPLE_PAYLOAD = {
    "title": "The Lighthouse Keeper",
    "situation": "A lighthouse keeper is found dead at the bottom of the stairs. The lamp was dark all night.",
    "solution": "The keeper's assistant switched off the lamp to wreck a smuggler's boat, and pushed the keeper when he tried to relight it.",
    "difficulty": "Normal",
    "npcs": [
        {
            "id": "victim",
            "name": "Elias Crane",
            "role": "Lighthouse keeper",
            "description": "Found dead at the foot of the spiral stairs.",
            "personality": "",
            "status": "deceased",
            "visualSummary": "An old man with a grey beard and an oilskin coat.",
        },
        {
            "id": "n1",
            "name": "Mara Voss",
            "role": "Fisherwoman",
            "description": "Saw the light go out from her boat.",
            "personality": "Blunt and impatient. Hates wasting words.",
            "status": "alive",
            "visualSummary": "A weathered woman in a yellow rain hat.",
        },
        {
            "id": "n2",
            "name": "Tobias Reed",
            "role": "Assistant keeper",
            "description": "Claims he was asleep all night.",
            "personality": "Polite and nervous. Lies about the lamp.",
            "status": "alive",
            "visualSummary": "A thin young man with ink-stained fingers.",
        },
    ],
    "clues": [
        {"id": "c1", "title": "Knife found at scene", "description": "A fishing knife lies under the stairs.", "isLocked": False},
        {"id": "c2", "title": "Lamp switched off", "description": "The lamp switch was turned off by hand.", "isLocked": True},
        {"id": "c3", "title": "Wet boots", "description": "The assistant's boots are soaked in seawater."},
        {"id": "c4", "title": "Smuggler's note", "description": "A note promising payment for a dark night.", "isLocked": False},
    ],
    "endings": [
        {"type": "GOOD", "title": "Light Restored", "description": "The assistant confesses.", "condition": "Names the assistant and the smuggling motive."},
        {"type": "NEUTRAL", "title": "Half Light", "description": "The assistant is arrested, motive unknown.", "condition": "Names the assistant only."},
        {"type": "BAD", "title": "Darkness", "description": "The case goes cold.", "condition": "Anything else."},
    ],
}


@pytest.fixture
def mystery_payload():
    return copy.deepcopy(SAMPLE_PAYLOAD)


@pytest.fixture
def mystery():
    return MysteryData(
        title="The Lighthouse Keeper",
        situation=SAMPLE_PAYLOAD["situation"],
        solution=SAMPLE_PAYLOAD["solution"],
        difficulty="Normal",
        npcs=[
            NPC(id="victim", name="Elias Crane", role="Lighthouse keeper", status=NPCStatus.DECEASED),
            NPC(
                id="n1",
                name="Mara Voss",
                role="Fisherwoman",
                personality="Blunt and impatient. Hates wasting words.",
                avatar_url="https://example.test/mara.png",
            ),
            NPC(id="n2", name="Tobias Reed", role="Assistant keeper", personality="Polite and nervous."),
        ],
        clues=[
            Clue(id="c1", title="Knife found at scene", description="A fishing knife lies under the stairs."),
            Clue(id="c2", title="Lamp switched off", description="The lamp switch was turned off by hand."),
        ],
        endings=[
            Ending(type=EndingType.GOOD, title="Light Restored", condition="Names the assistant and the motive."),
            Ending(type=EndingType.NEUTRAL, title="Half Light", condition="Names the assistant only."),
            Ending(type=EndingType.BAD, title="Darkness", condition="Anything else."),
        ],
    )


class ScriptedProvider(ContentProvider):
    """Replays canned outcomes. Exceptions in the script are raised."""

    supports_structured_output = True

    def __init__(self, responses=None, by_model=None, delay=0.0):
        self.responses = list(responses or [])
        self.by_model = dict(by_model or {})
        self.delay = delay
        self.calls = []

    def complete(self, model, messages, temperature, output_schema=None):
        self.calls.append(
            {"model": model, "messages": messages, "temperature": temperature, "schema": output_schema}
        )
        if self.delay:
            time.sleep(self.delay)
        if model in self.by_model:
            outcome = self.by_model[model]
        else:
            outcome = self.responses.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def models_called(self):
        return [call["model"] for call in self.calls]

    def prompt_text(self, index=-1):
        return "\n".join(m.content for m in self.calls[index]["messages"])


def make_adapter(provider, models=("model-a",), **kwargs):
    return ContentAdapter(provider, models=list(models), **kwargs)


class StubGenerator:
    def __init__(self, *outcomes, on_generate=None):
        self.outcomes = list(outcomes)
        self.on_generate = on_generate
        self.calls = 0

    def generate(self):
        self.calls += 1
        if self.on_generate:
            hook, self.on_generate = self.on_generate, None
            hook()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class StubJudge:
    def __init__(self, *responses, failure=None, on_judge=None):
        self.responses = list(responses)
        self.failure = failure
        self.on_judge = on_judge
        self.calls = []

    def judge_with_status(self, mystery, utterance, target_id, recent_history=()):
        self.calls.append(
            {"utterance": utterance, "target": target_id, "history": list(recent_history)}
        )
        if self.on_judge:
            hook, self.on_judge = self.on_judge, None
            hook()
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return response, self.failure


class StubEvaluator:
    def __init__(self, evaluation=None, failure=None, on_evaluate=None):
        self.evaluation = evaluation or EndingEvaluation(
            type=EndingType.GOOD, title="Light Restored", narrative="The assistant confesses."
        )
        self.failure = failure
        self.on_evaluate = on_evaluate
        self.calls = []

    def evaluate_with_status(self, mystery, theory):
        self.calls.append(theory)
        if self.on_evaluate:
            hook, self.on_evaluate = self.on_evaluate, None
            hook()
        return self.evaluation, self.failure


def dialogue(reply, clue_id=None, answer_type=AnswerType.NPC_DIALOGUE):
    return JudgeResponse(answer_type=answer_type, reply=reply, unlocked_clue_id=clue_id)
