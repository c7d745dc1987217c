"""Anonymous labels, ranking-text parsing and rank aggregation. Pure functions."""

import logging
import re

from llm_council.models import AggregateRanking, StageOneResult, StageTwoResult

logger = logging.getLogger(__name__)

FINAL_RANKING_MARKER = "FINAL RANKING:"
LABEL_PREFIX = "Response"

_NUMBERED_ENTRY = re.compile(rf"\d+\.\s*({LABEL_PREFIX} [A-Z]+)\b")
_ANY_LABEL = re.compile(rf"{LABEL_PREFIX} [A-Z]+\b")


def label_for_index(index: int) -> str:
    """0 -> "A", 25 -> "Z", 26 -> "AA", 27 -> "AB", ..."""
    letters = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def assign_labels(stage1_results: list[StageOneResult]) -> dict[str, str]:
    """Map "Response A", "Response B", ... to model ids in collection order."""
    return {
        f"{LABEL_PREFIX} {label_for_index(i)}": result.model
        for i, result in enumerate(stage1_results)
    }


def _dedupe_known(labels: list[str], valid_labels: set[str] | None) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for label in labels:
        if valid_labels is not None and label not in valid_labels:
            continue
        if label in seen:
            continue
        seen.add(label)
        ordered.append(label)
    return ordered


def parse_ranking(ranking_text: str, valid_labels: set[str] | None = None) -> list[str]:
    """Extract the ordered label list from a model's ranking text.

    Fallback order:
      1. numbered entries ("1. Response C") after the FINAL RANKING: marker
      2. any "Response X" after the marker
      3. any "Response X" in the whole text when the marker is absent

    Labels outside valid_labels are dropped and repeated labels keep their
    first position.
    """
    if FINAL_RANKING_MARKER in ranking_text:
        section = ranking_text.split(FINAL_RANKING_MARKER)[1]
        numbered = _NUMBERED_ENTRY.findall(section)
        if numbered:
            return _dedupe_known(numbered, valid_labels)
        return _dedupe_known(_ANY_LABEL.findall(section), valid_labels)

    return _dedupe_known(_ANY_LABEL.findall(ranking_text), valid_labels)


def aggregate_rankings(
    stage2_results: list[StageTwoResult],
    label_to_model: dict[str, str],
) -> list[AggregateRanking]:
    """Average each model's position across all peer rankings.

    A label at 0-based index i contributes position i + 1. Models nobody
    ranked are left out. Lower average is better; ties keep label order.
    """
    positions: dict[str, list[int]] = {model: [] for model in label_to_model.values()}

    for result in stage2_results:
        for index, label in enumerate(result.parsed_ranking):
            model = label_to_model.get(label)
            if model is not None:
                positions[model].append(index + 1)

    aggregate = [
        AggregateRanking(
            model=model,
            average_rank=round(sum(ranks) / len(ranks), 2),
            rankings_count=len(ranks),
        )
        for model, ranks in positions.items()
        if ranks
    ]
    aggregate.sort(key=lambda r: r.average_rank)
    logger.debug("Aggregate rankings: %s", aggregate)
    return aggregate
