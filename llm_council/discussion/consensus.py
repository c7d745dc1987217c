"""Consensus detection for role-based discussions.

Three strategies share the same shape, (messages, ...) -> ConsensusResult:

* heuristics: pattern scoring over the recent window, no external calls
* embeddings: mean pairwise cosine similarity of the recent messages
* llm_judge: a lightweight model reads the recent messages and answers in JSON

None of them raises for a failed external call; a failure reads as
"not detected" with confidence 0.
"""

import asyncio
import json
import logging
import math
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from llm_council.discussion.state import DiscussionMessage
from llm_council.invoker import ModelInvoker
from llm_council.models import ModelResponse

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], Awaitable[list[float]]]

HEURISTIC_MAX_SCORE = 5.0
HEURISTIC_MIN_MESSAGES = 4
EMBEDDING_MIN_MESSAGES = 3
JUDGE_MIN_MESSAGES = 4
JUDGE_TIMEOUT_SEC = 30.0

_SHORT_MESSAGE_CHARS = 150

_AFFIRMATIVE = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bagree", r"makes sense", r"good point", r"\bconcur", r"seems right",
        r"\breasonable", r"\bsounds?\b", r"\bvalid\b", r"well said",
        r"\bexactly\b", r"\bprecisely\b",
    )
]

_DISAGREEMENT = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bdisagree", r"\bhowever\b", r"\bbut\b", r"on the other hand",
        r"\bi think\b.*\bwrong\b", r"not quite", r"\bproblem", r"\bissue",
        r"\bconcern", r"\bflaw",
    )
]

_EXPLICIT_AGREEMENT = [
    re.compile(r"I agree with"),
    re.compile(r"build on.*point", re.IGNORECASE),
]

_SENTENCE = re.compile(r"[^.!?]+[.!?]+")

JUDGE_PROMPT = """You are analyzing a multi-agent discussion to determine if consensus has been reached.

Topic: "{topic}"

Recent discussion:
{transcript}

Analyze whether the participants have reached consensus. Consider:
1. Are they agreeing with each other?
2. Are there any remaining major disagreements?
3. Has the discussion converged on similar conclusions?

Respond with ONLY a JSON object:
{{
  "consensus": true/false,
  "confidence": 0.0-1.0,
  "reason": "brief explanation"
}}"""


class ConsensusMethod(str, Enum):
    HEURISTIC = "heuristic"
    SEMANTIC_SIMILARITY = "semantic_similarity"
    LLM_JUDGE = "llm_judge"
    COMBINED = "combined"


@dataclass
class ConsensusResult:
    detected: bool
    confidence: float                      # 0..1
    method: ConsensusMethod
    based_on_message_ids: list[str] = field(default_factory=list)
    reason: str | None = None


def _not_detected(method: ConsensusMethod, reason: str | None = None) -> ConsensusResult:
    return ConsensusResult(detected=False, confidence=0.0, method=method, reason=reason)


def _matches_any(patterns: list[re.Pattern], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def _terminal_sentence(text: str) -> str:
    sentences = _SENTENCE.findall(text)
    last = sentences[-1] if sentences else text
    return last.strip().lower()


def heuristic_score(messages: list[DiscussionMessage]) -> float:
    """Score a window of messages against HEURISTIC_MAX_SCORE.

    Factors: short messages (+1), affirmative language in at least two
    messages (+1, +0.5 more at three), at most one message with disagreement
    markers (+1, +0.5 more at none), converging closing sentences (+1) and
    explicit agreement phrasing (+1). The bonuses can push the total past
    the maximum.
    """
    if not messages:
        return 0.0
    contents = [m.content for m in messages]
    score = 0.0

    avg_len = sum(len(c) for c in contents) / len(contents)
    if avg_len < _SHORT_MESSAGE_CHARS:
        score += 1

    affirmative = sum(1 for c in contents if _matches_any(_AFFIRMATIVE, c))
    if affirmative >= 2:
        score += 1
    if affirmative >= 3:
        score += 0.5

    disagreement = sum(1 for c in contents if _matches_any(_DISAGREEMENT, c))
    if disagreement <= 1:
        score += 1
    if disagreement == 0:
        score += 0.5

    conclusions = {_terminal_sentence(c) for c in contents}
    if len(conclusions) <= len(contents) / 2:
        score += 1

    if any(_matches_any(_EXPLICIT_AGREEMENT, c) for c in contents):
        score += 1

    return score


def detect_by_heuristics(
    messages: list[DiscussionMessage],
    threshold: float = 0.7,
    window_size: int = 6,
) -> ConsensusResult:
    if len(messages) < HEURISTIC_MIN_MESSAGES:
        return _not_detected(ConsensusMethod.HEURISTIC)

    recent = messages[-window_size:]
    confidence = min(1.0, heuristic_score(recent) / HEURISTIC_MAX_SCORE)
    return ConsensusResult(
        detected=confidence >= threshold,
        confidence=confidence,
        method=ConsensusMethod.HEURISTIC,
        based_on_message_ids=[m.id for m in recent],
    )


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero magnitude."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


async def detect_by_embeddings(
    messages: list[DiscussionMessage],
    embed: EmbedFn,
    threshold: float = 0.85,
    window_size: int = 6,
) -> ConsensusResult:
    if len(messages) < EMBEDDING_MIN_MESSAGES:
        return _not_detected(ConsensusMethod.SEMANTIC_SIMILARITY)

    recent = messages[-window_size:]
    try:
        vectors = await asyncio.gather(*(embed(m.content) for m in recent))
        similarities = [
            cosine_similarity(vectors[i], vectors[j])
            for i in range(len(vectors))
            for j in range(i + 1, len(vectors))
        ]
    except Exception as exc:
        logger.warning("Embedding consensus check failed: %s", exc)
        return _not_detected(ConsensusMethod.SEMANTIC_SIMILARITY, reason=str(exc))

    if not similarities:
        return _not_detected(ConsensusMethod.SEMANTIC_SIMILARITY)

    mean = sum(similarities) / len(similarities)
    return ConsensusResult(
        detected=mean >= threshold,
        confidence=max(0.0, min(1.0, mean)),
        method=ConsensusMethod.SEMANTIC_SIMILARITY,
        based_on_message_ids=[m.id for m in recent],
    )


def parse_judge_response(text: str) -> dict | None:
    """Pull the JSON verdict out of a judge reply, tolerating code fences."""
    cleaned = re.sub(r"```(?:json)?", "", text).strip()
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        verdict = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError:
        return None
    return verdict if isinstance(verdict, dict) else None


def build_judge_prompt(messages: list[DiscussionMessage], topic: str) -> str:
    transcript = "\n".join(f"[{m.speaker_name}]: {m.content}" for m in messages)
    return JUDGE_PROMPT.format(topic=topic, transcript=transcript)


async def detect_by_llm_judge(
    messages: list[DiscussionMessage],
    topic: str,
    invoker: ModelInvoker,
    judge_model: str,
    window_size: int = 8,
) -> ConsensusResult:
    if len(messages) < JUDGE_MIN_MESSAGES:
        return _not_detected(ConsensusMethod.LLM_JUDGE)

    recent = messages[-window_size:]
    prompt = build_judge_prompt(recent, topic)
    response = await invoker.invoke(
        judge_model,
        [{"role": "user", "content": prompt}],
        timeout_sec=JUDGE_TIMEOUT_SEC,
    )
    if not isinstance(response, ModelResponse):
        return _not_detected(ConsensusMethod.LLM_JUDGE, reason=str(response))

    verdict = parse_judge_response(response.content)
    if verdict is None:
        logger.warning("Consensus judge returned unparsable output")
        return _not_detected(ConsensusMethod.LLM_JUDGE, reason="Malformed judge response")

    confidence = verdict.get("confidence", 0)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 0.0
    return ConsensusResult(
        detected=verdict.get("consensus") is True,
        confidence=max(0.0, min(1.0, float(confidence))),
        method=ConsensusMethod.LLM_JUDGE,
        based_on_message_ids=[m.id for m in recent],
        reason=verdict.get("reason") if isinstance(verdict.get("reason"), str) else None,
    )


def combine_results(results: list[ConsensusResult]) -> ConsensusResult:
    """Majority vote on detected (a tie counts), mean confidence, union of message ids."""
    if not results:
        return _not_detected(ConsensusMethod.COMBINED)

    detected_count = sum(1 for r in results if r.detected)
    ids: list[str] = []
    for r in results:
        for mid in r.based_on_message_ids:
            if mid not in ids:
                ids.append(mid)
    return ConsensusResult(
        detected=detected_count >= math.ceil(len(results) / 2),
        confidence=sum(r.confidence for r in results) / len(results),
        method=ConsensusMethod.COMBINED,
        based_on_message_ids=ids,
    )


class ConsensusDetector:
    """Picks and runs consensus strategies for a discussion.

    mode "heuristic" runs only the heuristic check on every call. mode
    "combined" runs every configured strategy and votes.
    """

    def __init__(
        self,
        invoker: ModelInvoker | None = None,
        mode: str = "heuristic",
        strategies: list[str] | None = None,
        threshold: float = 0.7,
        judge_model: str = "openai/gpt-4o-mini",
        embedding_model: str = "openai/text-embedding-3-small",
        embedding_threshold: float = 0.85,
    ) -> None:
        if mode not in ("heuristic", "combined"):
            raise ValueError(f"Unknown consensus mode '{mode}'")
        strategies = list(strategies or ["heuristic"])
        needs_invoker = {"embedding", "llm_judge"} & set(strategies)
        if mode == "combined" and needs_invoker and invoker is None:
            raise ValueError(f"Strategies {sorted(needs_invoker)} need a model invoker")
        self.invoker = invoker
        self.mode = mode
        self.strategies = strategies
        self.threshold = threshold
        self.judge_model = judge_model
        self.embedding_model = embedding_model
        self.embedding_threshold = embedding_threshold

    async def _embed(self, text: str) -> list[float]:
        return await self.invoker.embed(self.embedding_model, text)

    async def detect(self, messages: list[DiscussionMessage], topic: str) -> ConsensusResult:
        heuristic = detect_by_heuristics(messages, self.threshold)
        if self.mode == "heuristic":
            return heuristic

        pending = []
        for name in self.strategies:
            if name == "embedding":
                pending.append(detect_by_embeddings(messages, self._embed, self.embedding_threshold))
            elif name == "llm_judge":
                pending.append(detect_by_llm_judge(messages, topic, self.invoker, self.judge_model))

        results = [heuristic] if "heuristic" in self.strategies else []
        results.extend(await asyncio.gather(*pending))
        combined = combine_results(results)
        logger.debug(
            "Combined consensus: %s (%.2f) from %s",
            combined.detected, combined.confidence, [r.method.value for r in results],
        )
        return combined
