import pytest
from pydantic import ValidationError

from item_generation.schemas import (
    CandidateItem, EvaluationReport, GeneratedItem, GenerationRequest, Provenance,
    RetrievalContext, TierCounts,
)


def test_request_accepts_camel_case():
    req = GenerationRequest.model_validate({
        "subject": "Physics", "easyCount": 2, "mediumCount": 1, "maxIterations": 4,
        "overallDifficulty": "Medium",
    })
    assert req.easy_count == 2
    assert req.medium_count == 1
    assert req.max_iterations == 4
    assert req.overall_difficulty == "medium"
    assert req.requested_counts() == {"easy": 2, "medium": 1, "hard": 0}


def test_request_requires_subject():
    with pytest.raises(ValidationError):
        GenerationRequest(subject="   ", easy_count=1)


def test_request_requires_some_items():
    with pytest.raises(ValidationError):
        GenerationRequest(subject="Physics")


def test_request_rejects_negative_counts():
    with pytest.raises(ValidationError):
        GenerationRequest(subject="Physics", easy_count=-1, hard_count=2)


@pytest.mark.parametrize("raw,expected", [(0, 1), (-3, 1), (5, 5), (99, 10), (None, 3)])
def test_max_iterations_clamped(raw, expected):
    req = GenerationRequest(subject="Physics", easy_count=1, max_iterations=raw)
    assert req.max_iterations == expected


def test_lists_are_cleaned():
    req = GenerationRequest(subject="Physics", easy_count=1, topics=[" Optics ", "optics", "", "Waves"])
    assert req.topics == ["Optics", "Waves"]


@pytest.mark.parametrize("raw,expected", [("v1", "plain"), ("v1.5", "permutation"), ("V2", "feedback")])
def test_strategy_aliases(raw, expected):
    assert GenerationRequest(subject="P", easy_count=1, strategy=raw).strategy == expected


def test_unknown_strategy_rejected():
    with pytest.raises(ValidationError):
        GenerationRequest(subject="P", easy_count=1, strategy="v9")


def test_evaluator_default_follows_strategy():
    assert GenerationRequest(subject="P", easy_count=1, strategy="feedback").evaluator_enabled
    assert not GenerationRequest(subject="P", easy_count=1).evaluator_enabled
    assert GenerationRequest(subject="P", easy_count=1, use_evaluator=True).evaluator_enabled


def test_request_is_immutable():
    req = GenerationRequest(subject="P", easy_count=1)
    with pytest.raises(ValidationError):
        req.easy_count = 5


def _item(**overrides):
    data = dict(
        text="Q?", options=["a", "b", "c", "d"], correct_index=0, subject="P",
        difficulty="easy", fingerprint="f" * 64,
        provenance=Provenance(context_id="easy:plain", context_label="plain"),
    )
    data.update(overrides)
    return GeneratedItem(**data)


def test_generated_item_index_bounds():
    with pytest.raises(ValidationError):
        _item(correct_index=4)
    with pytest.raises(ValidationError):
        _item(correct_index=-1)
    assert _item(correct_index=3).correct_index == 3


def test_generated_item_option_count():
    with pytest.raises(ValidationError):
        _item(options=["a", "b", "c"])
    with pytest.raises(ValidationError):
        _item(options=list("abcdef"))
    assert len(_item(options=list("abcde")).options) == 5


def test_generated_item_dumps_camel_case():
    dumped = _item().model_dump(by_alias=True)
    assert dumped["correctIndex"] == 0
    assert dumped["provenance"]["contextId"] == "easy:plain"


@pytest.mark.parametrize("raw,expected", [
    (2, 2), ("1", 1), ("B", 1), ("(c)", 2), ("d.", 3), ("beta", 1), (None, None), (True, None), (1.0, 1),
])
def test_candidate_correct_index_resolution(raw, expected):
    cand = CandidateItem(text="Q", options=["alpha", "beta", "gamma", "delta"], correct_index=raw)
    assert cand.resolve_correct_index() == expected


def test_candidate_from_labelled_options():
    cand = CandidateItem.from_payload({
        "question_text": "Which?",
        "options": [{"label": "A", "text": "x"}, {"label": "B", "text": "y"}],
        "answer_key": "B",
    })
    assert cand.text == "Which?"
    assert cand.options == ["x", "y"]
    assert cand.resolve_correct_index() == 1


def test_candidate_from_non_dict_payload():
    assert CandidateItem.from_payload("nope").text == ""


def test_evaluation_scores_clamped():
    report = EvaluationReport.model_validate({
        "overallScore": 14, "coverageScore": -2, "diversityScore": "7.5", "difficultyBalanceScore": "n/a",
        "weakAreas": ["kinematics", ""],
    })
    assert report.overall_score == 10
    assert report.coverage_score == 1
    assert report.diversity_score == 7.5
    assert report.difficulty_balance_score == 5
    assert report.weak_areas == ["kinematics"]


def test_evaluation_bar():
    assert EvaluationReport(overall_score=7, diversity_score=6).clears_bar()
    assert not EvaluationReport(overall_score=8, diversity_score=5).clears_bar()
    assert not EvaluationReport.neutral().clears_bar()


def test_context_id_is_deterministic():
    a = RetrievalContext.build("easy", "Physics", "topic+tag", topics=["Optics"], tags=["jee"])
    b = RetrievalContext.build("easy", "Physics", "topic+tag", topics=["Optics"], tags=["jee"])
    assert a.id == b.id == "easy:topic+tag:t=Optics;g=jee"


def test_tier_counts_total():
    counts = TierCounts.from_counts({"easy": 2, "hard": 1})
    assert (counts.easy, counts.medium, counts.hard, counts.total) == (2, 0, 1, 3)


def test_candidate_options_keyed_by_letter():
    cand = CandidateItem.from_payload({
        "text": "What is the SI unit of force?",
        "options": {"A": "Newton", "B": "Joule", "C": "Watt", "D": "Pascal"},
        "answer": "A",
    })
    assert cand.options == ["Newton", "Joule", "Watt", "Pascal"]
    assert cand.resolve_correct_index() == 0


def test_candidate_with_scalar_options_is_empty():
    cand = CandidateItem.from_payload({"text": "Q?", "options": "Newton, Joule", "correctIndex": 0})
    assert cand.text == "" and cand.options == []


def test_candidate_scalar_topics_ignored():
    cand = CandidateItem.from_payload({"text": "Q?", "options": ["a", "b", "c", "d"], "topics": 5, "tags": {"k": 1}})
    assert cand.topics == [] and cand.tags == []


def test_numeric_option_text_wins_over_index():
    cand = CandidateItem(text="2 + 2 = ?", options=["2", "4", "6", "8"], correct_index="4")
    assert cand.resolve_correct_index() == 1
