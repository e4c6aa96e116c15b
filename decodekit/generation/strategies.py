"""
Token selection strategies.

This module implements:
- Greedy decoding
- Sampling
- Beam search (deterministic and sampled)

A strategy is chosen once per generation call from the configuration and
every member answers the same ``select`` contract.
"""

import enum
import math
from typing import List, NamedTuple, Optional

import torch
import torch.nn.functional as F


class Candidate(NamedTuple):
    """A possible continuation of a live hypothesis."""

    hypothesis_index: int  # Index into the item's live hypotheses
    token_id: int
    score: float  # New cumulative log probability


def _rank(candidates: List[Candidate]) -> List[Candidate]:
    # Best score first, then lower hypothesis index, then lower token id
    return sorted(candidates, key=lambda c: (-c.score, c.hypothesis_index, c.token_id))


def select_greedy(
    log_probs: torch.Tensor,
    filtered: torch.Tensor,
    beam_scores: torch.Tensor,
) -> List[Candidate]:
    """
    Pick the arg-max token for every hypothesis.

    Ties go to the lowest token id.

    Args:
        log_probs: Step log-probabilities of shape (hyps, vocab_size).
        filtered: Selection scores of shape (hyps, vocab_size).
        beam_scores: Cumulative scores of shape (hyps,).
    """
    candidates = []
    # argmax returns the first maximal index
    best_tokens = torch.argmax(filtered, dim=-1).tolist()
    for hyp_index, token_id in enumerate(best_tokens):
        if not math.isfinite(filtered[hyp_index, token_id].item()):
            continue
        score = beam_scores[hyp_index].item() + log_probs[hyp_index, token_id].item()
        candidates.append(Candidate(hyp_index, token_id, score))
    return candidates


def select_sample(
    log_probs: torch.Tensor,
    filtered: torch.Tensor,
    beam_scores: torch.Tensor,
    generator: Optional[torch.Generator] = None,
) -> List[Candidate]:
    """
    Draw one token per hypothesis from the filtered distribution.

    Args:
        log_probs: Step log-probabilities of shape (hyps, vocab_size).
        filtered: Selection scores of shape (hyps, vocab_size).
        beam_scores: Cumulative scores of shape (hyps,).
        generator: Random source; the only source of randomness.
    """
    candidates = []
    for hyp_index in range(filtered.size(0)):
        row = filtered[hyp_index]
        if not torch.isfinite(row).any():
            continue
        probs = F.softmax(row, dim=-1)
        if generator is not None:
            probs = probs.to(generator.device)
        token_id = int(torch.multinomial(probs, num_samples=1, generator=generator).item())
        score = beam_scores[hyp_index].item() + log_probs[hyp_index, token_id].item()
        candidates.append(Candidate(hyp_index, token_id, score))
    return candidates


def select_beam(
    log_probs: torch.Tensor,
    beam_scores: torch.Tensor,
    beam_width: int,
) -> List[Candidate]:
    """
    Expand every live hypothesis and keep the best ``2 * beam_width`` candidates.

    Each hypothesis contributes at most ``2 * beam_width`` tokens, enough
    that the beam can be refilled even if the best half are all EOS.

    Args:
        log_probs: Step log-probabilities of shape (hyps, vocab_size).
        beam_scores: Cumulative scores of shape (hyps,).
        beam_width: Number of beams.

    Returns:
        Ranked candidates, best first.
    """
    num_candidates = 2 * beam_width
    next_scores = log_probs.to(beam_scores.device, torch.float64) + beam_scores.unsqueeze(-1).double()

    # Stable sort keeps lower token ids first among equal scores
    sorted_scores, sorted_tokens = torch.sort(next_scores, descending=True, stable=True, dim=-1)
    sorted_scores = sorted_scores[:, :num_candidates].tolist()
    sorted_tokens = sorted_tokens[:, :num_candidates].tolist()

    candidates = []
    for hyp_index, (scores, tokens) in enumerate(zip(sorted_scores, sorted_tokens)):
        for score, token_id in zip(scores, tokens):
            if math.isfinite(score):
                candidates.append(Candidate(hyp_index, token_id, score))

    return _rank(candidates)[:num_candidates]


def select_beam_sample(
    log_probs: torch.Tensor,
    filtered: torch.Tensor,
    beam_scores: torch.Tensor,
    beam_width: int,
    generator: Optional[torch.Generator] = None,
) -> List[Candidate]:
    """
    Draw ``2 * beam_width`` distinct candidates across all hypotheses.

    Candidates are sampled without replacement from the filtered
    distribution over (hypothesis, token) pairs, then ranked by their
    cumulative log-probability like in beam search.

    Args:
        log_probs: Step log-probabilities of shape (hyps, vocab_size).
        filtered: Selection scores of shape (hyps, vocab_size).
        beam_scores: Cumulative scores of shape (hyps,).
        beam_width: Number of beams.
        generator: Random source.
    """
    vocab_size = filtered.size(-1)
    flat = filtered.to(beam_scores.device, torch.float64) + beam_scores.unsqueeze(-1).double()
    flat = flat.view(-1)

    num_valid = int(torch.isfinite(flat).sum().item())
    if num_valid == 0:
        return []

    probs = F.softmax(flat, dim=-1)
    if generator is not None:
        probs = probs.to(generator.device)
    num_samples = min(2 * beam_width, num_valid)
    drawn = torch.multinomial(probs, num_samples=num_samples, replacement=False, generator=generator)

    candidates = []
    for index in drawn.tolist():
        hyp_index, token_id = divmod(index, vocab_size)
        score = beam_scores[hyp_index].item() + log_probs[hyp_index, token_id].item()
        if math.isfinite(score):
            candidates.append(Candidate(hyp_index, token_id, score))

    return _rank(candidates)


class SearchStrategy(enum.Enum):
    """
    Decoding strategy, selected once per call from the configuration.

    Example:
        >>> strategy = SearchStrategy.from_config(config)
        >>> candidates = strategy.select(log_probs, filtered, beam_scores, beam_width=4)
    """

    GREEDY = "greedy"
    SAMPLE = "sample"
    BEAM_SEARCH = "beam_search"
    BEAM_SAMPLE = "beam_sample"

    @classmethod
    def from_config(cls, config) -> "SearchStrategy":
        if config.beam_width > 1:
            return cls.BEAM_SAMPLE if config.do_sample else cls.BEAM_SEARCH
        return cls.SAMPLE if config.do_sample else cls.GREEDY

    @property
    def samples(self) -> bool:
        """Whether top-k/top-p filtering and random draws apply."""
        return self in (SearchStrategy.SAMPLE, SearchStrategy.BEAM_SAMPLE)

    @property
    def min_tokens_to_keep(self) -> int:
        # Beam sampling needs at least two tokens to refill the beam after EOS
        return 2 if self is SearchStrategy.BEAM_SAMPLE else 1

    def select(
        self,
        log_probs: torch.Tensor,
        filtered: torch.Tensor,
        beam_scores: torch.Tensor,
        beam_width: int = 1,
        generator: Optional[torch.Generator] = None,
    ) -> List[Candidate]:
        """
        Select continuations for the live hypotheses of one input.

        Args:
            log_probs: Step log-probabilities of shape (hyps, vocab_size).
            filtered: Selection scores of shape (hyps, vocab_size).
            beam_scores: Cumulative scores of shape (hyps,).
            beam_width: Number of beams.
            generator: Random source for sampling strategies.

        Returns:
            Candidates ordered best first (one per hypothesis for greedy
            and sampling).
        """
        if self is SearchStrategy.GREEDY:
            return select_greedy(log_probs, filtered, beam_scores)
        if self is SearchStrategy.SAMPLE:
            return select_sample(log_probs, filtered, beam_scores, generator)
        if self is SearchStrategy.BEAM_SEARCH:
            return select_beam(log_probs, beam_scores, beam_width)
        return select_beam_sample(log_probs, filtered, beam_scores, beam_width, generator)
