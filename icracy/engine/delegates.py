"""
Delegate client: one evaluation request per delegate.

Calls OpenRouter when an API key is configured, otherwise a deterministic
offline stand-in that performs no network I/O.
"""

import hashlib
import json
import logging

from ..adapters.openrouter_client import query_model
from ..settings import DELEGATE_TIMEOUT, OPENROUTER_API_KEY
from .models import IDIOTIC, INTELLIGENT, DelegateOutcome
from .parsers import flatten_content, parse_delegate_output
from .prompts import build_delegate_prompt

logger = logging.getLogger(__name__)

OFFLINE_SOURCE = "mock"
REMOTE_SOURCE = "openrouter"

PRO_ARGUMENT = (
    "The resolution is internally coherent, actionable, and likely to increase "
    "institutional clarity with measurable outcomes."
)
CON_ARGUMENT = (
    "The resolution introduces governance risk and uneven burden distribution, "
    "with unclear enforcement and potential systemic side effects."
)
PRO_REBUTTAL = "Opponents may argue adoption cost exceeds benefit in the near term."
CON_REBUTTAL = "Supporters may argue long-term gains justify transitional complexity."


def offline_delegate_vote(model_id: str, title: str, body: str) -> DelegateOutcome:
    """
    Produce a deterministic vote without calling any model.

    The seed is the SHA-256 of (model_id, title, body), so identical inputs
    always give the same vote, confidence and argument.
    """
    seed = hashlib.sha256(f"{model_id}::{title}::{body}".encode()).hexdigest()
    n = int(seed[:8], 16)
    vote = INTELLIGENT if n % 2 == 0 else IDIOTIC
    confidence = 55 + (n % 40)

    return DelegateOutcome(
        model_id=model_id,
        vote=vote,
        confidence=confidence,
        argument=PRO_ARGUMENT if vote == INTELLIGENT else CON_ARGUMENT,
        rebuttal=PRO_REBUTTAL if vote == INTELLIGENT else CON_REBUTTAL,
        raw=json.dumps({"vote": vote, "confidence": confidence}, separators=(",", ":")),
        source=OFFLINE_SOURCE,
    )


async def query_delegate(model_id: str, title: str, body: str) -> DelegateOutcome:
    """
    Ask one delegate to evaluate a resolution.

    Args:
        model_id: OpenRouter model identifier
        title: Resolution title
        body: Resolution text

    Returns:
        Successful DelegateOutcome with the parsed vote

    Raises:
        DelegateCallFailed: If the remote call fails (no retry)
    """
    if not OPENROUTER_API_KEY:
        return offline_delegate_vote(model_id, title, body)

    messages = build_delegate_prompt(title, body)
    response = await query_model(
        model_id, messages, api_key=OPENROUTER_API_KEY, timeout=DELEGATE_TIMEOUT
    )

    logger.debug("%s token usage: %s", model_id, response.get("usage"))
    content = flatten_content(response.get("content"))
    parsed = parse_delegate_output(content)

    return DelegateOutcome(
        model_id=model_id,
        vote=parsed["vote"],
        confidence=parsed["confidence"],
        argument=parsed["argument"],
        rebuttal=parsed["rebuttal"],
        raw=content,
        source=REMOTE_SOURCE,
    )
