"""
Score processors applied to next-token logits before selection.

This module implements:
- Repetition penalty
- No-repeat n-gram blocking
- Minimum length (EOS masking)
- Temperature scaling
- Top-k and top-p (nucleus) filtering
- The combined per-step pipeline used by the step driver
"""

from typing import Dict, List, NamedTuple, Sequence, Tuple

import torch
import torch.nn.functional as F

from .errors import InvalidConfig


def apply_repetition_penalty(
    scores: torch.Tensor,
    histories: Sequence[Sequence[int]],
    penalty: float = 1.0,
) -> torch.Tensor:
    """
    Apply repetition penalty to logits.

    Every token already present in a row's history has its score divided by
    ``penalty`` when positive and multiplied by it otherwise, so the token
    always becomes less likely.

    Args:
        scores: Logits of shape (rows, vocab_size).
        histories: Token ids seen so far, one sequence per row.
        penalty: Repetition penalty factor (> 1 = penalize repetition).

    Returns:
        Penalized logits (a new tensor).

    Example:
        >>> scores = apply_repetition_penalty(scores, [[5, 7], [3]], penalty=1.2)
    """
    if penalty == 1.0:
        return scores

    scores = scores.clone()
    vocab_size = scores.size(-1)
    for row, history in enumerate(histories):
        seen = sorted(t for t in set(history) if 0 <= t < vocab_size)
        if not seen:
            continue
        tokens = torch.tensor(seen, dtype=torch.long, device=scores.device)
        selected = scores[row, tokens]
        scores[row, tokens] = torch.where(selected > 0, selected / penalty, selected * penalty)

    return scores


def get_banned_ngram_tokens(history: Sequence[int], ngram_size: int) -> List[int]:
    """
    Tokens that would complete an n-gram already present in ``history``.

    Args:
        history: Token ids of one hypothesis.
        ngram_size: Size of the n-grams that may not repeat.

    Returns:
        Sorted list of banned token ids.

    Example:
        >>> get_banned_ngram_tokens([1, 2, 3, 1], ngram_size=2)
        [2]
    """
    if ngram_size <= 0 or len(history) < ngram_size - 1:
        return []

    history = list(history)
    generated: Dict[Tuple[int, ...], set] = {}
    for start in range(len(history) - ngram_size + 1):
        ngram = tuple(history[start:start + ngram_size])
        generated.setdefault(ngram[:-1], set()).add(ngram[-1])

    prefix = tuple(history[len(history) - ngram_size + 1:]) if ngram_size > 1 else ()
    return sorted(generated.get(prefix, ()))


def apply_no_repeat_ngram(
    scores: torch.Tensor,
    histories: Sequence[Sequence[int]],
    ngram_size: int,
    filter_value: float = float("-inf"),
) -> torch.Tensor:
    """
    Mask tokens that would repeat an n-gram of size ``ngram_size``.

    Args:
        scores: Logits of shape (rows, vocab_size).
        histories: Token ids seen so far, one sequence per row.
        ngram_size: N-gram size (0 to disable).
        filter_value: Value assigned to banned tokens.

    Returns:
        Masked logits.
    """
    if ngram_size <= 0:
        return scores

    scores = scores.clone()
    for row, history in enumerate(histories):
        banned = get_banned_ngram_tokens(history, ngram_size)
        if banned:
            scores[row, banned] = filter_value

    return scores


def apply_min_length(
    scores: torch.Tensor,
    eos_token_ids: Sequence[int],
    cur_len: int,
    min_length: int,
    filter_value: float = float("-inf"),
) -> torch.Tensor:
    """
    Forbid EOS while appending it would end a sequence shorter than ``min_length``.

    Args:
        scores: Logits of shape (rows, vocab_size).
        eos_token_ids: End-of-sequence ids.
        cur_len: Number of tokens generated so far (before this step).
        min_length: Minimum generated length.
        filter_value: Value assigned to EOS ids.
    """
    if not eos_token_ids or cur_len + 1 >= min_length:
        return scores

    vocab_size = scores.size(-1)
    eos = [t for t in eos_token_ids if t < vocab_size]
    if not eos:
        return scores

    scores = scores.clone()
    scores[:, eos] = filter_value
    return scores


def apply_temperature(scores: torch.Tensor, temperature: float) -> torch.Tensor:
    """
    Apply temperature scaling to logits.

    Higher temperature = more random, lower = more deterministic.

    Args:
        scores: Logits of shape (..., vocab_size).
        temperature: Temperature value (> 0).

    Returns:
        Scaled logits.

    Raises:
        InvalidConfig: If temperature is not positive.
    """
    if not temperature > 0:
        raise InvalidConfig(f"temperature must be > 0, got {temperature}")
    if temperature == 1.0:
        return scores
    return scores / temperature


def top_k_filtering(
    scores: torch.Tensor,
    k: int,
    filter_value: float = float("-inf"),
    min_tokens_to_keep: int = 1,
) -> torch.Tensor:
    """
    Filter logits to keep only top-k values.

    Args:
        scores: Logits of shape (..., vocab_size).
        k: Number of top values to keep (0 to disable).
        filter_value: Value to assign to filtered positions.
        min_tokens_to_keep: Minimum number of tokens to keep.

    Returns:
        Filtered logits.

    Example:
        >>> filtered = top_k_filtering(scores, k=50)
    """
    vocab_size = scores.size(-1)
    if k <= 0 or k >= vocab_size:
        return scores

    k = min(max(k, min_tokens_to_keep), vocab_size)

    # Keep exactly k entries; among equal scores the lower token id wins
    _, sorted_indices = torch.sort(scores, descending=True, stable=True, dim=-1)
    remove = torch.ones_like(scores, dtype=torch.bool)
    remove.scatter_(-1, sorted_indices[..., :k], False)

    return scores.masked_fill(remove, filter_value)


def top_p_filtering(
    scores: torch.Tensor,
    p: float,
    filter_value: float = float("-inf"),
    min_tokens_to_keep: int = 1,
) -> torch.Tensor:
    """
    Filter logits using nucleus (top-p) sampling.

    Keeps the smallest set of tokens whose cumulative probability
    exceeds p.

    Args:
        scores: Logits of shape (..., vocab_size).
        p: Cumulative probability threshold (0 < p <= 1).
        filter_value: Value to assign to filtered positions.
        min_tokens_to_keep: Minimum number of tokens to keep.

    Returns:
        Filtered logits.

    Example:
        >>> filtered = top_p_filtering(scores, p=0.9)
    """
    if p >= 1.0:
        return scores

    # Sort logits in descending order
    sorted_scores, sorted_indices = torch.sort(scores, descending=True, stable=True, dim=-1)

    # Compute cumulative probabilities
    cumulative_probs = torch.cumsum(F.softmax(sorted_scores, dim=-1), dim=-1)

    # Remove everything after the mass first exceeds p
    sorted_indices_to_remove = cumulative_probs > p
    sorted_indices_to_remove[..., 1:] = sorted_indices_to_remove[..., :-1].clone()
    sorted_indices_to_remove[..., :min_tokens_to_keep] = False

    # Scatter back to original order
    indices_to_remove = sorted_indices_to_remove.scatter(
        dim=-1, index=sorted_indices, src=sorted_indices_to_remove
    )

    return scores.masked_fill(indices_to_remove, filter_value)


class ProcessedScores(NamedTuple):
    """Output of :func:`process_scores`."""

    log_probs: torch.Tensor  # Log-probabilities used for score bookkeeping
    filtered: torch.Tensor  # Scores used for token selection


def process_scores(
    scores: torch.Tensor,
    histories: Sequence[Sequence[int]],
    config,
    cur_len: int,
    sampling: bool = False,
    min_tokens_to_keep: int = 1,
) -> ProcessedScores:
    """
    Run the full per-step processing pipeline.

    Order: repetition penalty, no-repeat n-gram masking, minimum length,
    temperature, then top-k and top-p when sampling.

    Args:
        scores: Raw logits of shape (rows, vocab_size).
        histories: Prompt plus generated ids for every row.
        config: GenerationConfig.
        cur_len: Number of tokens generated so far.
        sampling: Whether top-k/top-p filtering applies.
        min_tokens_to_keep: Lower bound for top-k/top-p.

    Returns:
        ProcessedScores with log-probabilities (after temperature, before
        top-k/top-p) and the filtered selection scores.
    """
    scores = scores.float()
    scores = apply_repetition_penalty(scores, histories, config.repetition_penalty)
    scores = apply_no_repeat_ngram(scores, histories, config.no_repeat_ngram_size)
    scores = apply_min_length(scores, config.eos_token_ids, cur_len, config.min_length)
    scores = apply_temperature(scores, config.temperature)

    log_probs = F.log_softmax(scores, dim=-1)
    # Rows with every token masked stay at -inf instead of NaN
    log_probs = log_probs.masked_fill(torch.isnan(log_probs), float("-inf"))

    if not sampling:
        return ProcessedScores(log_probs=log_probs, filtered=log_probs)

    filtered = top_k_filtering(log_probs, config.top_k, min_tokens_to_keep=min_tokens_to_keep)
    filtered = top_p_filtering(filtered, config.top_p, min_tokens_to_keep=min_tokens_to_keep)
    return ProcessedScores(log_probs=log_probs, filtered=filtered)
