"""Pytest configuration and fixtures."""

import math
from typing import Callable, Dict, List, Optional

import pytest
import torch

from decodekit.models import TinyCausalLM, TinyConfig


class ScriptedModel:
    """
    Step model whose next-token distribution is a function of the history.

    The cache holds the (left-padded) ids seen so far, so incremental calls
    can rebuild every row's history. ``rows`` records how many hypotheses
    each call received.
    """

    def __init__(
        self,
        fn: Callable[[List[int]], Dict[int, float]],
        vocab_size: int = 10,
        use_cache: bool = True,
    ):
        self.fn = fn
        self.vocab_size = vocab_size
        self.use_cache = use_cache
        self.rows: List[int] = []
        self.input_widths: List[int] = []

    @property
    def calls(self) -> int:
        return len(self.rows)

    def step(self, input_ids, cache=None, attention_mask=None):
        self.rows.append(input_ids.size(0))
        self.input_widths.append(input_ids.size(1))

        ids = input_ids if cache is None else torch.cat([cache, input_ids], dim=1)
        if attention_mask is None:
            attention_mask = torch.ones_like(ids)
        assert attention_mask.shape == ids.shape

        logits = torch.full((ids.size(0), self.vocab_size), float("-inf"))
        for row, (tokens, mask) in enumerate(zip(ids.tolist(), attention_mask.tolist())):
            history = [t for t, m in zip(tokens, mask) if m]
            for token_id, prob in self.fn(history).items():
                logits[row, token_id] = math.log(prob)

        return logits, (ids if self.use_cache else None)


@pytest.fixture(autouse=True)
def reset_seed():
    """Reset random seeds before each test for reproducibility."""
    torch.manual_seed(42)
    yield


@pytest.fixture
def scripted_model():
    """Factory for scripted step models."""
    def make(fn, vocab_size: int = 10, use_cache: bool = True) -> ScriptedModel:
        return ScriptedModel(fn, vocab_size=vocab_size, use_cache=use_cache)
    return make


@pytest.fixture
def tiny_model():
    """A small randomly initialized causal LM."""
    torch.manual_seed(0)
    return TinyCausalLM(TinyConfig(vocab_size=16, d_model=32, n_heads=2, max_seq_len=64))
