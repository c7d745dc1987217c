"""Model health checks: ping each configured model before a run."""

import logging

from llm_council.invoker import ModelInvoker, ModelTask
from llm_council.models import ModelResponse

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def run_health_checks(
    invoker: ModelInvoker,
    model_ids: list[str],
) -> dict[str, tuple[bool, str]]:
    """Ping all models in parallel.

    Returns:
        Dict mapping model id -> (ok, error_message).
        error_message is "" when ok is True.
    """
    unique = list(dict.fromkeys(model_ids))
    tasks = [
        ModelTask(model_id=m, messages=[{"role": "user", "content": _PING_PROMPT}], timeout_sec=_TIMEOUT_SEC)
        for m in unique
    ]
    results = await invoker.invoke_parallel(tasks)

    report: dict[str, tuple[bool, str]] = {}
    for model_id, result in zip(unique, results):
        if isinstance(result, ModelResponse):
            report[model_id] = (True, "")
        else:
            report[model_id] = (False, str(result))
            logger.debug("Health check failed for %s: %s", model_id, result)
    return report
