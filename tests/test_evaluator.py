import pytest

from game.evaluator import (
    EVALUATION_FALLBACK,
    EVALUATION_TEMPERATURE,
    SolutionEvaluator,
)
from game.models import EndingType
from game.prompts import EVALUATION_MAX_WORDS, EVALUATION_SCHEMA
from services.errors import CredentialError, ExhaustionError, TransientProviderError
from tests.conftest import ScriptedProvider, make_adapter

THEORY = "The assistant turned off the lamp for the smugglers and pushed the keeper."


def test_evaluation_of_a_theory(mystery):
    provider = ScriptedProvider(
        responses=[{"type": "GOOD", "title": "Light Restored", "narrative": "He confesses."}]
    )
    evaluation = SolutionEvaluator(make_adapter(provider)).evaluate(mystery, THEORY)

    assert evaluation.type is EndingType.GOOD
    assert evaluation.title == "Light Restored"
    assert evaluation.narrative == "He confesses."

    call = provider.calls[0]
    assert call["temperature"] == EVALUATION_TEMPERATURE
    assert call["schema"] == EVALUATION_SCHEMA
    prompt = provider.prompt_text()
    assert THEORY in prompt
    assert mystery.solution in prompt
    assert "Names the assistant only." in prompt
    assert f"max {EVALUATION_MAX_WORDS} words" in prompt


@pytest.mark.parametrize(
    "outcome",
    [
        TransientProviderError("down"),
        CredentialError("bad key"),
        "garbled",
        {"type": "SPLENDID", "title": "?", "narrative": "?"},
    ],
)
def test_failures_settle_on_the_fixed_bad_ending(mystery, outcome):
    provider = ScriptedProvider(by_model={"model-a": outcome})
    evaluation = SolutionEvaluator(make_adapter(provider)).evaluate(mystery, THEORY)

    assert evaluation == EVALUATION_FALLBACK
    assert evaluation.type is EndingType.BAD


def test_evaluate_with_status_reports_the_failure(mystery):
    provider = ScriptedProvider(by_model={"model-a": TransientProviderError("down")})
    evaluation, failure = SolutionEvaluator(make_adapter(provider)).evaluate_with_status(
        mystery, THEORY
    )
    assert evaluation == EVALUATION_FALLBACK
    assert isinstance(failure, ExhaustionError)
