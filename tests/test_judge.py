import pytest

from game.judge import (
    GM_TEMPERATURE,
    JUDGE_FALLBACK,
    JUDGE_FALLBACK_REPLY,
    NPC_TEMPERATURE,
    InterrogationJudge,
)
from game.models import GM_TARGET, AnswerType
from game.prompts import JUDGE_SCHEMA
from services.errors import CredentialError, ExhaustionError, TransientProviderError
from tests.conftest import ScriptedProvider, make_adapter


def _judge(provider, **kwargs):
    return InterrogationJudge(make_adapter(provider, **kwargs))


def test_game_master_answer(mystery):
    provider = ScriptedProvider(
        responses=[{"answerType": "YES", "reply": "Yes.", "unlockedClueId": None}]
    )
    response = _judge(provider).judge(mystery, "Was it murder?", GM_TARGET)

    assert response.answer_type is AnswerType.YES
    assert response.reply == "Yes."
    assert response.unlocked_clue_id is None
    call = provider.calls[0]
    assert call["temperature"] == GM_TEMPERATURE
    assert call["schema"] == JUDGE_SCHEMA
    assert "The Game Master" in provider.prompt_text()


def test_npc_answer_uses_persona_and_higher_temperature(mystery):
    provider = ScriptedProvider(
        responses=[{"answerType": "NPC_DIALOGUE", "reply": "I saw a knife.", "unlockedClueId": "c1"}]
    )
    response = _judge(provider).judge(mystery, "What did you see?", "n1")

    assert response.answer_type is AnswerType.NPC_DIALOGUE
    assert response.unlocked_clue_id == "c1"
    assert provider.calls[0]["temperature"] == NPC_TEMPERATURE
    prompt = provider.prompt_text()
    assert "Mara Voss" in prompt
    assert "Blunt and impatient" in prompt


def test_prompt_carries_truth_clues_and_recent_history(mystery):
    provider = ScriptedProvider(responses=[{"answerType": "NO", "reply": "No."}])
    history = ["one", "two", "three", "four", "five", "six"]

    _judge(provider).judge(mystery, "Was it the wind?", GM_TARGET, history)

    prompt = provider.prompt_text()
    assert mystery.solution in prompt
    assert '"id": "c2"' in prompt
    assert "Was it the wind?" in prompt
    assert "- six" in prompt
    assert "- two" in prompt
    assert "- one" not in prompt


def test_unknown_target_is_answered_as_game_master(mystery):
    provider = ScriptedProvider(responses=[{"answerType": "HINT", "reply": "Look up."}])
    response = _judge(provider).judge(mystery, "Hello?", "ghost")

    assert response.answer_type is AnswerType.HINT
    assert provider.calls[0]["temperature"] == GM_TEMPERATURE


def test_invented_clue_id_is_dropped(mystery):
    provider = ScriptedProvider(
        responses=[{"answerType": "YES", "reply": "Yes.", "unlockedClueId": "c42"}]
    )
    response = _judge(provider).judge(mystery, "Was there a boat?", GM_TARGET)
    assert response.unlocked_clue_id is None


@pytest.mark.parametrize(
    "outcome",
    [
        TransientProviderError("everything is down"),
        CredentialError("bad key"),
        "definitely not json",
        {"answerType": "YES", "reply": ""},
    ],
)
def test_any_failure_becomes_the_fixed_fallback(mystery, outcome):
    provider = ScriptedProvider(by_model={"model-a": outcome})
    response = _judge(provider).judge(mystery, "Anything?", GM_TARGET)

    assert response == JUDGE_FALLBACK
    assert response.answer_type is AnswerType.CLARIFICATION
    assert response.reply == JUDGE_FALLBACK_REPLY
    assert response.unlocked_clue_id is None


def test_judge_with_status_reports_the_failure(mystery):
    provider = ScriptedProvider(by_model={"model-a": TransientProviderError("busy")})
    response, failure = _judge(provider).judge_with_status(mystery, "Anything?", GM_TARGET)

    assert response == JUDGE_FALLBACK
    assert isinstance(failure, ExhaustionError)

    provider = ScriptedProvider(responses=[{"answerType": "NO", "reply": "No."}])
    response, failure = _judge(provider).judge_with_status(mystery, "Anything?", GM_TARGET)
    assert failure is None
