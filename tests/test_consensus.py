"""Tests for llm_council/discussion/consensus.py."""

import pytest

from llm_council.discussion.consensus import (
    ConsensusDetector,
    ConsensusMethod,
    ConsensusResult,
    combine_results,
    cosine_similarity,
    detect_by_embeddings,
    detect_by_heuristics,
    detect_by_llm_judge,
    heuristic_score,
    parse_judge_response,
)
from llm_council.discussion.state import DiscussionMessage
from llm_council.invoker import ModelInvoker, ModelProvider
from tests.conftest import MockProvider


def _messages(*contents: str) -> list[DiscussionMessage]:
    return [
        DiscussionMessage(f"m{i}", 1, f"r{i % 3}", f"Role {i % 3}", "x/model", text, float(i))
        for i, text in enumerate(contents)
    ]


AGREEING = _messages(
    "I agree with the pilot plan. We should start small.",
    "Good point, that makes sense. We should start small.",
    "Exactly. We should start small.",
    "Well said, I concur. We should start small.",
    "That seems right. We should start small.",
    "Reasonable. We should start small.",
)

ARGUING = _messages(
    "I disagree, the rollout plan has a serious flaw in its staffing model and ignores support load.",
    "However, the real problem is cost; nobody has priced the licences or the migration effort yet.",
    "But that issue is minor compared with the security concern around shared credentials today.",
    "On the other hand, the timeline is the bigger flaw, we cannot hire that quickly this quarter.",
    "Not quite, the budget problem dominates everything else here and should be addressed first.",
    "I think that is wrong; the concern about hiring is overstated given the contractor market.",
)


def test_heuristic_detects_agreement():
    result = detect_by_heuristics(AGREEING, threshold=0.7)
    assert result.detected
    assert result.method is ConsensusMethod.HEURISTIC
    assert result.confidence == pytest.approx(1.0)
    assert result.based_on_message_ids == [m.id for m in AGREEING]


def test_heuristic_rejects_heavy_disagreement():
    result = detect_by_heuristics(ARGUING, threshold=0.7)
    assert not result.detected
    assert result.confidence < 0.7


def test_heuristic_needs_four_messages():
    result = detect_by_heuristics(AGREEING[:3])
    assert not result.detected
    assert result.confidence == 0
    assert result.based_on_message_ids == []


def test_heuristic_uses_last_six_messages():
    messages = ARGUING + AGREEING
    result = detect_by_heuristics(messages)
    assert result.detected
    assert result.based_on_message_ids == [m.id for m in messages[-6:]]


def test_disagree_is_not_counted_as_agreement():
    # "disagree" must not satisfy the affirmative pattern
    score = heuristic_score(_messages("I disagree.", "I disagree.", "Nope.", "Nope."))
    # short (+1) and repeated conclusions (+1); no affirmatives, two disagreements
    assert score == 2.0


@pytest.mark.parametrize(
    "contents, expected",
    [
        # short (+1), four affirmatives (+1.5), no disagreement (+1.5)
        (("That sounds fine.", "It is valid.", "Sounds good to me.", "A valid plan."), 4.0),
        # "soundly" and "invalid" are whole words of their own
        (("That went soundly.", "It is invalid.", "Ran soundly again.", "An invalid plan."), 2.5),
    ],
)
def test_affirmative_markers_match_whole_words(contents, expected):
    assert heuristic_score(_messages(*contents)) == expected


def test_cosine_similarity():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([0, 0], [1, 1]) == 0.0


async def test_embeddings_detect_similar_messages():
    async def embed(text):
        return [1.0, 0.01]

    result = await detect_by_embeddings(AGREEING, embed, threshold=0.85)
    assert result.detected
    assert result.method is ConsensusMethod.SEMANTIC_SIMILARITY
    assert result.confidence == pytest.approx(1.0)


async def test_embeddings_detect_divergence():
    vectors = iter([[1, 0], [0, 1], [1, 0], [0, 1], [1, 0], [0, 1]])

    async def embed(text):
        return next(vectors)

    result = await detect_by_embeddings(AGREEING, embed, threshold=0.85)
    assert not result.detected


async def test_embeddings_failure_is_not_detected():
    async def embed(text):
        raise RuntimeError("quota exceeded")

    result = await detect_by_embeddings(AGREEING, embed)
    assert not result.detected
    assert result.confidence == 0


async def test_embeddings_need_three_messages():
    async def embed(text):
        return [1.0]

    result = await detect_by_embeddings(AGREEING[:2], embed)
    assert not result.detected


def test_parse_judge_response_tolerates_fences():
    text = '```json\n{"consensus": true, "confidence": 0.9, "reason": "aligned"}\n```'
    assert parse_judge_response(text) == {"consensus": True, "confidence": 0.9, "reason": "aligned"}


def test_parse_judge_response_rejects_garbage():
    assert parse_judge_response("They mostly agree.") is None
    assert parse_judge_response("{not json}") is None


async def test_llm_judge_detects(invoker, gateway):
    gateway.replies["judge/m"] = 'Sure: {"consensus": true, "confidence": 0.8, "reason": "same plan"}'
    result = await detect_by_llm_judge(AGREEING, "Pilot plan", invoker, "judge/m")
    assert result.detected
    assert result.confidence == 0.8
    assert result.reason == "same plan"
    assert result.based_on_message_ids == [m.id for m in AGREEING]
    prompt = gateway.generate.call_args.args[1][0]["content"]
    assert '"Pilot plan"' in prompt
    assert "[Role 0]: I agree with the pilot plan." in prompt


async def test_llm_judge_malformed_output(invoker, gateway):
    gateway.replies["judge/m"] = "Yes, consensus."
    result = await detect_by_llm_judge(AGREEING, "Pilot plan", invoker, "judge/m")
    assert not result.detected
    assert result.confidence == 0


async def test_llm_judge_call_failure(invoker, gateway):
    gateway.failing.add("judge/m")
    result = await detect_by_llm_judge(AGREEING, "Pilot plan", invoker, "judge/m")
    assert not result.detected
    assert result.confidence == 0


async def test_llm_judge_clamps_confidence(invoker, gateway):
    gateway.replies["judge/m"] = '{"consensus": false, "confidence": 7}'
    result = await detect_by_llm_judge(AGREEING, "Pilot plan", invoker, "judge/m")
    assert result.confidence == 1.0
    assert not result.detected


def test_combine_majority_and_union():
    results = [
        ConsensusResult(True, 0.9, ConsensusMethod.HEURISTIC, ["a", "b"]),
        ConsensusResult(True, 0.6, ConsensusMethod.LLM_JUDGE, ["b", "c"]),
        ConsensusResult(False, 0.3, ConsensusMethod.SEMANTIC_SIMILARITY, []),
    ]
    combined = combine_results(results)
    assert combined.detected
    assert combined.confidence == pytest.approx(0.6)
    assert combined.method is ConsensusMethod.COMBINED
    assert combined.based_on_message_ids == ["a", "b", "c"]


def test_combine_tie_counts_as_consensus():
    results = [
        ConsensusResult(True, 1.0, ConsensusMethod.HEURISTIC),
        ConsensusResult(False, 0.0, ConsensusMethod.LLM_JUDGE),
    ]
    assert combine_results(results).detected


def test_combine_minority_is_not_consensus():
    results = [
        ConsensusResult(True, 1.0, ConsensusMethod.HEURISTIC),
        ConsensusResult(False, 0.2, ConsensusMethod.LLM_JUDGE),
        ConsensusResult(False, 0.1, ConsensusMethod.SEMANTIC_SIMILARITY),
    ]
    assert not combine_results(results).detected


async def test_detector_heuristic_mode_makes_no_calls(invoker, gateway):
    detector = ConsensusDetector(invoker)
    result = await detector.detect(AGREEING, "Pilot plan")
    assert result.method is ConsensusMethod.HEURISTIC
    gateway.generate.assert_not_called()


async def test_detector_combined_mode_votes():
    provider = MockProvider(
        "openai",
        replies={"judge": '{"consensus": false, "confidence": 0.1}'},
        embeddings={},
    )
    invoker = ModelInvoker({ModelProvider.OPENAI: provider})
    detector = ConsensusDetector(
        invoker,
        mode="combined",
        strategies=["heuristic", "embedding", "llm_judge"],
        judge_model="openai/judge",
        embedding_model="openai/embed",
    )
    result = await detector.detect(AGREEING, "Pilot plan")
    # heuristic and identical embeddings agree, the judge does not
    assert result.method is ConsensusMethod.COMBINED
    assert result.detected
    assert result.confidence == pytest.approx((1.0 + 1.0 + 0.1) / 3)


def test_detector_rejects_unknown_mode():
    with pytest.raises(ValueError):
        ConsensusDetector(mode="vibes")


def test_detector_combined_needs_invoker_for_remote_strategies():
    with pytest.raises(ValueError):
        ConsensusDetector(None, mode="combined", strategies=["heuristic", "llm_judge"])
