"""3-stage council: parallel opinions, anonymized peer ranking, chairman synthesis."""

import logging
from collections.abc import AsyncIterator

from llm_council.invoker import ModelInvoker, ModelTask
from llm_council.models import (
    CouncilEvent,
    CouncilResult,
    ModelResponse,
    ParticipantConfig,
    StageOneResult,
    StageThreeResult,
    StageTwoResult,
)
from llm_council.ranking import aggregate_rankings, assign_labels, parse_ranking

logger = logging.getLogger(__name__)

LANGUAGE_INSTRUCTION = "IMPORTANT: You must respond in the same language as the user's input."
CHAIRMAN_LANGUAGE_INSTRUCTION = (
    "CRITICAL: You MUST write your final answer in the same language as the Original Question above."
)
ALL_FAILED_MESSAGE = "All models failed to respond. Please try again."
SYNTHESIS_FAILED_MESSAGE = "Error: Unable to generate final synthesis."
DEFAULT_TITLE = "New Conversation"

_TITLE_MAX_LEN = 50
_TITLE_TIMEOUT_SEC = 30.0

RANKING_PROMPT = """You are evaluating different responses to the following question:

Question: {query}

Here are the responses from different models (anonymized):

{responses}

Your task:
1. First, evaluate each response individually. For each response, explain what it does well and what it does poorly.
2. Then, at the very end of your response, provide a final ranking.
3. You MUST respond in the same language as the Question above.

IMPORTANT: Your final ranking MUST be formatted EXACTLY as follows:
- Start with the line "FINAL RANKING:" (all caps, with colon)
- Then list the responses from best to worst as a numbered list
- Each line should be: number, period, space, then ONLY the response label (e.g., "1. Response A")
- Do not add any other text or explanations in the ranking section

Example of the correct format for your ENTIRE response:

Response A provides good detail on X but misses Y...
Response B is accurate but lacks depth on Z...
Response C offers the most comprehensive answer...

FINAL RANKING:
1. Response C
2. Response A
3. Response B

Now provide your evaluation and ranking:"""

CHAIRMAN_PROMPT = """You are the Chairman of an LLM Council. Multiple AI models have provided responses to a user's question, and then ranked each other's responses.

Original Question: {query}

STAGE 1 - Individual Responses:
{stage1}

STAGE 2 - Peer Rankings:
{stage2}

Your task as Chairman is to synthesize all of this information into a single, comprehensive, accurate answer to the user's original question. Consider:
- The individual responses and their insights
- The peer rankings and what they reveal about response quality
- Any patterns of agreement or disagreement

Provide a clear, well-reasoned final answer that represents the council's collective wisdom:"""

TITLE_PROMPT = """Generate a very short title (3-5 words maximum) that summarizes the following question.
The title should be concise and descriptive. Do not use quotes or punctuation in the title.

Question: {query}

Title:"""


class CouncilConfigError(ValueError):
    """Raised before dispatch when no usable council participant is configured."""


def with_language_instruction(system_prompt: str | None) -> str:
    """Append the language rule to a caller prompt without replacing it."""
    if system_prompt:
        return f"{system_prompt}\n\n{LANGUAGE_INSTRUCTION}"
    return LANGUAGE_INSTRUCTION


def sanitize_participants(
    participants: list[ParticipantConfig] | None,
    default_models: list[str],
) -> list[ParticipantConfig]:
    """Trim ids and prompts, drop blanks, fall back to defaults when none given.

    Raises:
        CouncilConfigError: If no participant is left.
    """
    source = participants if participants else [ParticipantConfig(model=m) for m in default_models]
    normalized = [
        ParticipantConfig(
            model=p.model.strip(),
            system_prompt=(p.system_prompt or "").strip() or None,
        )
        for p in source
    ]
    # One seat per model id; the first occurrence keeps its system prompt.
    unique: dict[str, ParticipantConfig] = {}
    for p in normalized:
        if p.model and p.model not in unique:
            unique[p.model] = p
    normalized = list(unique.values())
    if not normalized:
        raise CouncilConfigError("At least one council model must be specified.")
    return normalized


async def stage1_collect_responses(
    invoker: ModelInvoker,
    query: str,
    participants: list[ParticipantConfig],
    timeout_sec: float | None = None,
) -> list[StageOneResult]:
    """Stage 1: ask every participant in parallel. Failed participants are dropped."""
    messages = [{"role": "user", "content": query}]
    tasks = [
        ModelTask(
            model_id=p.model,
            messages=messages,
            system_prompt=with_language_instruction(p.system_prompt),
            timeout_sec=timeout_sec,
        )
        for p in participants
    ]

    logger.info("Stage 1: querying %d models", len(tasks))
    results = await invoker.invoke_parallel(tasks)

    stage1 = [
        StageOneResult(model=p.model, response=r.content)
        for p, r in zip(participants, results)
        if isinstance(r, ModelResponse)
    ]
    logger.info("Stage 1 complete: %d/%d models responded", len(stage1), len(participants))
    return stage1


def build_ranking_prompt(query: str, stage1_results: list[StageOneResult], label_to_model: dict[str, str]) -> str:
    responses_text = "\n\n".join(
        f"{label}:\n{result.response}"
        for label, result in zip(label_to_model, stage1_results)
    )
    return RANKING_PROMPT.format(query=query, responses=responses_text)


async def stage2_collect_rankings(
    invoker: ModelInvoker,
    query: str,
    stage1_results: list[StageOneResult],
    participants: list[ParticipantConfig],
    timeout_sec: float | None = None,
) -> tuple[list[StageTwoResult], dict[str, str]]:
    """Stage 2: every participant ranks the anonymized Stage 1 responses.

    Returns:
        (rankings, label -> model id mapping)
    """
    label_to_model = assign_labels(stage1_results)
    if not stage1_results:
        return [], label_to_model

    logger.debug("Stage 2 anonymization map: %s", label_to_model)

    messages = [{"role": "user", "content": build_ranking_prompt(query, stage1_results, label_to_model)}]
    tasks = [
        ModelTask(
            model_id=p.model,
            messages=messages,
            system_prompt=p.system_prompt,
            timeout_sec=timeout_sec,
        )
        for p in participants
    ]
    results = await invoker.invoke_parallel(tasks)

    valid_labels = set(label_to_model)
    stage2 = [
        StageTwoResult(
            model=p.model,
            ranking=r.content,
            parsed_ranking=parse_ranking(r.content, valid_labels),
        )
        for p, r in zip(participants, results)
        if isinstance(r, ModelResponse)
    ]
    logger.info("Stage 2 complete: %d/%d rankings collected", len(stage2), len(participants))
    return stage2, label_to_model


def build_chairman_prompt(
    query: str,
    stage1_results: list[StageOneResult],
    stage2_results: list[StageTwoResult],
) -> str:
    stage1_text = "\n\n".join(f"Model: {r.model}\nResponse: {r.response}" for r in stage1_results)
    stage2_text = "\n\n".join(f"Model: {r.model}\nRanking: {r.ranking}" for r in stage2_results)
    prompt = CHAIRMAN_PROMPT.format(query=query, stage1=stage1_text, stage2=stage2_text)
    return f"{prompt}\n\n{CHAIRMAN_LANGUAGE_INSTRUCTION}"


async def stage3_synthesize_final(
    invoker: ModelInvoker,
    query: str,
    stage1_results: list[StageOneResult],
    stage2_results: list[StageTwoResult],
    chairman: str,
    chairman_override: str | None = None,
    timeout_sec: float | None = None,
) -> StageThreeResult:
    """Stage 3: the chairman writes the final answer.

    Always returns exactly one result; a failed call yields an error message
    attributed to the chairman.
    """
    effective_chairman = (chairman_override or "").strip() or chairman
    messages = [{"role": "user", "content": build_chairman_prompt(query, stage1_results, stage2_results)}]

    logger.info("Stage 3: synthesis via %s", effective_chairman)
    response = await invoker.invoke(effective_chairman, messages, timeout_sec=timeout_sec)

    if not isinstance(response, ModelResponse):
        logger.warning("Chairman %s failed: %s", effective_chairman, response)
        return StageThreeResult(model=effective_chairman, response=SYNTHESIS_FAILED_MESSAGE)
    return StageThreeResult(model=effective_chairman, response=response.content)


def _failed_result(query: str) -> CouncilResult:
    return CouncilResult(
        query=query,
        stage1=[],
        stage2=[],
        stage3=StageThreeResult(model="error", response=ALL_FAILED_MESSAGE),
    )


async def run_council(
    invoker: ModelInvoker,
    query: str,
    participants: list[ParticipantConfig],
    chairman: str,
    chairman_override: str | None = None,
    timeout_sec: float | None = None,
) -> CouncilResult:
    """Run all three stages and return the combined result. Never raises for model failures."""
    stage1 = await stage1_collect_responses(invoker, query, participants, timeout_sec)
    if not stage1:
        logger.error("Council failed: no model responded in stage 1")
        return _failed_result(query)

    stage2, label_to_model = await stage2_collect_rankings(invoker, query, stage1, participants, timeout_sec)
    aggregate = aggregate_rankings(stage2, label_to_model)
    stage3 = await stage3_synthesize_final(
        invoker, query, stage1, stage2, chairman, chairman_override, timeout_sec
    )
    return CouncilResult(
        query=query,
        stage1=stage1,
        stage2=stage2,
        stage3=stage3,
        label_to_model=label_to_model,
        aggregate_rankings=aggregate,
    )


async def stream_council(
    invoker: ModelInvoker,
    query: str,
    participants: list[ParticipantConfig],
    chairman: str,
    chairman_override: str | None = None,
    timeout_sec: float | None = None,
) -> AsyncIterator[CouncilEvent]:
    """Run the council and yield one event per stage boundary.

    Order: stage1_start, stage1_complete, stage2_start, stage2_complete,
    stage3_start, stage3_complete, complete. When no model answers in
    stage 1 an error event carrying the synthetic stage 3 result ends the
    stream.
    """
    yield CouncilEvent(type="stage1_start")
    stage1 = await stage1_collect_responses(invoker, query, participants, timeout_sec)
    yield CouncilEvent(type="stage1_complete", data=stage1)

    if not stage1:
        failed = _failed_result(query)
        yield CouncilEvent(type="error", data=failed.stage3, message=ALL_FAILED_MESSAGE)
        return

    yield CouncilEvent(type="stage2_start")
    stage2, label_to_model = await stage2_collect_rankings(invoker, query, stage1, participants, timeout_sec)
    aggregate = aggregate_rankings(stage2, label_to_model)
    yield CouncilEvent(
        type="stage2_complete",
        data=stage2,
        label_to_model=label_to_model,
        aggregate_rankings=aggregate,
    )

    yield CouncilEvent(type="stage3_start")
    stage3 = await stage3_synthesize_final(
        invoker, query, stage1, stage2, chairman, chairman_override, timeout_sec
    )
    yield CouncilEvent(type="stage3_complete", data=stage3)
    yield CouncilEvent(type="complete")


async def generate_title(invoker: ModelInvoker, query: str, model: str) -> str:
    """Short conversation title from the first user message."""
    messages = [{"role": "user", "content": TITLE_PROMPT.format(query=query)}]
    response = await invoker.invoke(model, messages, timeout_sec=_TITLE_TIMEOUT_SEC)
    if not isinstance(response, ModelResponse):
        return DEFAULT_TITLE

    title = response.content.strip().replace('"', "").replace("'", "")
    return truncate_title(title) or DEFAULT_TITLE


def truncate_title(text: str) -> str:
    text = text.strip()
    if len(text) > _TITLE_MAX_LEN:
        return text[: _TITLE_MAX_LEN - 3] + "..."
    return text
