"""Ranking of finished hypotheses and assembly of generation results."""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import torch

from .hypotheses import BatchItem


@dataclass
class SequenceOutput:
    """One returned sequence."""

    tokens: List[int]  # Generated ids (EOS included when present)
    score: float  # Length-normalized ranking score
    truncated: bool = False  # Forcibly finalized before finishing


@dataclass
class GenerationOutput:
    """
    Result of a generation call.

    ``sequences[i]`` holds the ranked outputs for input ``i``, best first.
    """

    sequences: List[List[SequenceOutput]] = field(default_factory=list)
    cancelled: bool = False

    def __len__(self) -> int:
        return len(self.sequences)

    def __getitem__(self, index: int) -> List[SequenceOutput]:
        return self.sequences[index]

    def tokens(self) -> List[List[List[int]]]:
        """Token ids only, nested as ``[input][rank]``."""
        return [[seq.tokens for seq in ranked] for ranked in self.sequences]

    def best(self) -> List[SequenceOutput]:
        """Best sequence for every input."""
        return [ranked[0] for ranked in self.sequences]

    def to_tensor(
        self,
        pad_token_id: int = 0,
        device: Optional[torch.device] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Pad all sequences into a single tensor.

        Returns:
            Tuple of (sequences, scores) with shapes
            (total_sequences, max_len) and (total_sequences,).
        """
        flat = [seq for ranked in self.sequences for seq in ranked]
        max_len = max((len(seq.tokens) for seq in flat), default=0)

        sequences = torch.full(
            (len(flat), max_len), pad_token_id, dtype=torch.long, device=device
        )
        scores = torch.zeros(len(flat), device=device)

        for idx, seq in enumerate(flat):
            if seq.tokens:
                sequences[idx, :len(seq.tokens)] = torch.tensor(seq.tokens, dtype=torch.long)
            scores[idx] = seq.score

        return sequences, scores


def finalize_item(item: BatchItem, num_return_sequences: int, length_penalty: float) -> List[SequenceOutput]:
    """
    Pick the sequences returned for one input.

    Finished hypotheses come first, best first. If fewer than
    ``num_return_sequences`` finished, the best live hypotheses are
    forcibly finalized and appended after them.
    """
    outputs = [
        SequenceOutput(tokens=list(hyp.tokens), score=score)
        for score, hyp in item.finished.ranked()[:num_return_sequences]
    ]

    if len(outputs) < num_return_sequences:
        for score, hyp in item.live_ranked(length_penalty):
            if len(outputs) == num_return_sequences:
                break
            hyp.truncated = True
            outputs.append(SequenceOutput(tokens=list(hyp.tokens), score=score, truncated=True))

    return outputs


def assemble_outputs(items: Sequence[BatchItem], config, cancelled: bool = False) -> GenerationOutput:
    """Build the final result for every input, in input order."""
    ordered = sorted(items, key=lambda item: item.index)
    return GenerationOutput(
        sequences=[
            finalize_item(item, config.num_return_sequences, config.length_penalty)
            for item in ordered
        ],
        cancelled=cancelled,
    )
