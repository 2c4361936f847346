import pytest

from engines.response_analyzer import GENERIC_CAP, ResponseAnalyzer
from engines.rules import RuleSet

DETAILED_ANSWER = (
    "I trained a small classification model on labelled training data. First I split the data "
    "into a training set and a test set, then I tracked accuracy and recall on each epoch. "
    "Because the validation loss started rising after epoch six, I added dropout and early "
    "stopping to reduce overfitting. For example, calling `model.fit()` with a callback stopped "
    "training at the best checkpoint."
)


@pytest.fixture
def analyzer():
    return ResponseAnalyzer()


@pytest.mark.parametrize("text", [None, "", "I don't know", "yes", "nine words is still not enough for this check"])
def test_short_answers_score_zero(analyzer, text):
    result = analyzer.analyze(text)
    assert result.score == 0.0
    assert result.flags == ["too-short"]
    assert result.analysis == "Response is too short to evaluate"


def test_detailed_answer_scores_well(analyzer):
    result = analyzer.analyze(DETAILED_ANSWER)

    assert result.flags == []
    assert result.specificity == pytest.approx(1.0)
    assert result.coherence == pytest.approx(0.8)
    assert result.score == pytest.approx(0.76)
    assert result.analysis == "Good response with adequate detail"


def test_generic_filler_is_capped(analyzer):
    text = "It works and I learned a lot from this module overall and it was a fine experience for me"
    result = analyzer.analyze(text)

    assert "generic" in result.flags
    assert result.score <= GENERIC_CAP


def test_shallow_answer_is_discounted(analyzer):
    text = (
        "The module was interesting and I enjoyed going through all of the material that was "
        "presented to us during the sessions with the other people in my group"
    )
    result = analyzer.analyze(text)

    assert "shallow" in result.flags
    assert result.specificity < 0.3
    assert 0.0 < result.score < 0.3


def test_score_is_bounded_for_huge_input(analyzer):
    text = ("Because the model uses `fit()` on training data, for example, the API returns tokens. " * 400)
    result = analyzer.analyze(text)
    assert 0.0 <= result.score <= 1.0


def test_custom_indicator_terms():
    analyzer = ResponseAnalyzer(indicator_terms=["Widget", "Sprocket"])
    assert analyzer.indicator_terms == ("widget", "sprocket")
    assert analyzer.specificity("widget and sprocket") == pytest.approx(0.2)


def test_generic_matches_names_rules(analyzer):
    names = [rule.name for rule in analyzer.generic_matches("idk")]
    assert names == ["very-short", "acknowledgement"]


def test_empty_generic_rule_set_is_respected():
    analyzer = ResponseAnalyzer(generic_rules=RuleSet("none"))
    assert analyzer.generic_matches("idk") == []
    assert not analyzer.is_generic("idk")
