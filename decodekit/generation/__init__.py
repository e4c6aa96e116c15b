"""
Autoregressive decoding engine.

This module contains:
- Generation configuration and errors
- Score processors (repetition penalty, n-gram blocking, temperature, top-k, top-p)
- Search strategies (greedy, sampling, beam search)
- Hypothesis bookkeeping and the step driver
- Cache reordering for incremental decoding
"""

from .config import GenerationConfig

from .errors import (
    GenerationError,
    InvalidConfig,
    ModelInferenceError,
    SearchExhausted,
)

from .processors import (
    apply_repetition_penalty,
    get_banned_ngram_tokens,
    apply_no_repeat_ngram,
    apply_min_length,
    apply_temperature,
    top_k_filtering,
    top_p_filtering,
    process_scores,
)

from .strategies import (
    Candidate,
    SearchStrategy,
)

from .hypotheses import (
    Hypothesis,
    FinishedHypotheses,
    BatchItem,
    ranking_score,
)

from .cache import (
    DynamicCache,
    CacheArena,
    reorder_cache,
)

from .model import (
    StepModel,
    CallableStepModel,
    FullSequenceModel,
    as_step_model,
)

from .output import (
    SequenceOutput,
    GenerationOutput,
)

from .driver import (
    StepDriver,
    generate,
)

__all__ = [
    # Config & errors
    "GenerationConfig",
    "GenerationError",
    "InvalidConfig",
    "ModelInferenceError",
    "SearchExhausted",
    # Processors
    "apply_repetition_penalty",
    "get_banned_ngram_tokens",
    "apply_no_repeat_ngram",
    "apply_min_length",
    "apply_temperature",
    "top_k_filtering",
    "top_p_filtering",
    "process_scores",
    # Strategies
    "Candidate",
    "SearchStrategy",
    # Hypotheses
    "Hypothesis",
    "FinishedHypotheses",
    "BatchItem",
    "ranking_score",
    # Cache
    "DynamicCache",
    "CacheArena",
    "reorder_cache",
    # Model
    "StepModel",
    "CallableStepModel",
    "FullSequenceModel",
    "as_step_model",
    # Output
    "SequenceOutput",
    "GenerationOutput",
    # Driver
    "StepDriver",
    "generate",
]
