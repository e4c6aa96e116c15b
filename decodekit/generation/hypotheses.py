"""
Hypothesis bookkeeping for decoding.

This module implements:
- Hypotheses (token sequence + cumulative log-probability)
- The bounded, ranked store of finished hypotheses
- Per-input decoding state and its termination rules
"""

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple


def ranking_score(score: float, length: int, length_penalty: float = 1.0) -> float:
    """
    Length-normalized score used to rank finished hypotheses.

    Args:
        score: Cumulative log-probability.
        length: Number of generated tokens (clamped to at least 1).
        length_penalty: Exponent applied to the length. 1.0 = plain average,
            < 1.0 favors longer sequences, > 1.0 favors shorter ones.

    Example:
        >>> ranking_score(-2.0, 4, length_penalty=1.0)
        -0.5
    """
    return score / (max(length, 1) ** length_penalty)


@dataclass
class Hypothesis:
    """A single decoding hypothesis."""

    prompt: Tuple[int, ...]
    tokens: List[int] = field(default_factory=list)  # Generated ids only
    score: float = 0.0  # Cumulative log probability
    slot: int = -1  # Row of this hypothesis in the cache arena
    finished: bool = False
    truncated: bool = False

    def __len__(self) -> int:
        return len(self.tokens)

    @property
    def history(self) -> List[int]:
        """Prompt followed by generated tokens."""
        return list(self.prompt) + self.tokens

    @property
    def last_token(self) -> int:
        return self.tokens[-1] if self.tokens else self.prompt[-1]

    def extend(self, token_id: int, step_log_prob: float) -> "Hypothesis":
        """Return a child hypothesis with one more token."""
        assert step_log_prob <= 1e-6, f"log-probability must be <= 0, got {step_log_prob}"
        return Hypothesis(
            prompt=self.prompt,
            tokens=self.tokens + [token_id],
            score=self.score + min(step_log_prob, 0.0),
            slot=self.slot,
        )


class FinishedHypotheses:
    """
    Bounded store of finished hypotheses, kept sorted best first.

    Args:
        num_beams: Maximum number of hypotheses kept.
        length_penalty: Length normalization exponent.
    """

    def __init__(self, num_beams: int, length_penalty: float = 1.0):
        self.num_beams = num_beams
        self.length_penalty = length_penalty
        self.beams: List[Tuple[float, Hypothesis]] = []

    def __len__(self) -> int:
        return len(self.beams)

    @property
    def is_full(self) -> bool:
        return len(self.beams) >= self.num_beams

    @property
    def worst_score(self) -> float:
        return self.beams[-1][0] if self.beams else float("inf")

    def add(self, hyp: Hypothesis) -> bool:
        """
        Add a finished hypothesis.

        Returns:
            True if the hypothesis was kept.
        """
        score = ranking_score(hyp.score, len(hyp), self.length_penalty)
        if self.is_full and score <= self.worst_score:
            return False

        hyp.finished = True
        self.beams.append((score, hyp))

        # Stable sort keeps earlier hypotheses first among equal scores
        self.beams.sort(key=lambda x: x[0], reverse=True)

        # Keep only top hypotheses
        if len(self.beams) > self.num_beams:
            self.beams.pop()

        return True

    def ranked(self) -> List[Tuple[float, Hypothesis]]:
        """Finished hypotheses with their ranking scores, best first."""
        return list(self.beams)


@dataclass
class BatchItem:
    """Decoding state for one input sequence."""

    index: int
    prompt: Tuple[int, ...]
    beam_width: int
    finished: FinishedHypotheses
    hypotheses: List[Hypothesis] = field(default_factory=list)  # Live hypotheses
    done: bool = False

    @classmethod
    def create(cls, index: int, prompt: Sequence[int], config) -> "BatchItem":
        """Start decoding ``prompt`` with a single empty hypothesis."""
        prompt = tuple(int(t) for t in prompt)
        item = cls(
            index=index,
            prompt=prompt,
            beam_width=config.beam_width,
            finished=FinishedHypotheses(config.beam_width, config.length_penalty),
            hypotheses=[Hypothesis(prompt=prompt)],
        )
        if config.max_length == 0:
            item.finished.add(item.hypotheses.pop())
            item.done = True
        return item

    @property
    def cur_len(self) -> int:
        return len(self.hypotheses[0]) if self.hypotheses else 0

    def best_achievable_score(self, max_length: int, length_penalty: float) -> float:
        """
        Upper bound on the ranking score any live hypothesis can still reach.

        Scores only decrease as tokens are added, so the bound divides the
        best live score by the longest length still possible.
        """
        if not self.hypotheses:
            return float("-inf")
        best = max(h.score for h in self.hypotheses)
        if best >= 0 or length_penalty == 0:
            return best
        return best / (max_length ** length_penalty)

    def advance(self, candidates, config) -> None:
        """
        Apply ranked candidates and update the live set.

        ``candidates`` are ``(hypothesis_index, token_id, score)`` tuples,
        best first. EOS continuations ranked below ``beam_width`` are
        dropped; the first ``beam_width`` other continuations become the new
        live hypotheses, or finish when they reach ``max_length``.
        """
        if not candidates:
            # Every continuation was masked; keep the current live set for output
            self.done = True
            return

        eos_token_ids = config.eos_token_ids
        next_hypotheses: List[Hypothesis] = []
        kept = 0

        for rank, (hyp_index, token_id, score) in enumerate(candidates):
            parent = self.hypotheses[hyp_index]
            child = parent.extend(token_id, score - parent.score)

            if token_id in eos_token_ids and len(child) >= config.min_length:
                if rank < self.beam_width:
                    self.finished.add(child)
                continue

            if len(child) >= config.max_length:
                self.finished.add(child)
            else:
                next_hypotheses.append(child)
            kept += 1

            if kept == self.beam_width:
                break

        assert len(next_hypotheses) <= self.beam_width, "beam count exceeds beam width"
        self.hypotheses = next_hypotheses
        self.done = self.is_done(config)

    def is_done(self, config) -> bool:
        """Check if decoding should stop for this item."""
        if not self.hypotheses:
            return True
        if self.cur_len >= config.max_length:
            return True
        if self.beam_width == 1:
            return False
        if not config.early_stopping or not self.finished.is_full:
            return False
        best_possible = self.best_achievable_score(config.max_length, config.length_penalty)
        return self.finished.worst_score >= best_possible

    def live_ranked(self, length_penalty: float) -> List[Tuple[float, Hypothesis]]:
        """Live hypotheses with their ranking scores, best first."""
        ranked = [
            (ranking_score(h.score, len(h), length_penalty), h) for h in self.hypotheses
        ]
        ranked.sort(key=lambda x: x[0], reverse=True)
        return ranked
