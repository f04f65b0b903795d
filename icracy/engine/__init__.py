"""
Debate engine.

Pure pieces of the debate pipeline: delegate prompts, response parsing,
consensus aggregation, the delegate client and the event bus. Orchestration
lives in ``icracy.engine.debate``, which also depends on storage.

Public API:
    - Delegates: query_delegate, offline_delegate_vote
    - Parsing: parse_delegate_output, normalize_vote, infer_topic, extract_ranked_model_rows
    - Consensus: compute_consensus
    - Events: EventBus
    - Models: DelegateOutcome, Consensus
"""

# Consensus
from .consensus import compute_consensus

# Delegate client
from .delegates import offline_delegate_vote, query_delegate

# Event bus
from .events import EventBus

# Models
from .models import IDIOTIC, INTELLIGENT, Consensus, DelegateOutcome

# Parsers
from .parsers import (
    extract_ranked_model_rows,
    infer_topic,
    normalize_vote,
    parse_delegate_output,
)

# Prompts
from .prompts import build_delegate_prompt

__all__ = [
    # Delegates
    "query_delegate",
    "offline_delegate_vote",
    # Parsers
    "parse_delegate_output",
    "normalize_vote",
    "infer_topic",
    "extract_ranked_model_rows",
    # Consensus
    "compute_consensus",
    # Events
    "EventBus",
    # Models
    "DelegateOutcome",
    "Consensus",
    "INTELLIGENT",
    "IDIOTIC",
    # Prompts
    "build_delegate_prompt",
]
