"""
Tiny causal language model used as a reference step model.

This module implements:
- A single-layer decoder-only transformer with learned positions
- Incremental decoding through a DynamicCache
- Left-padding support through the attention mask
"""

import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F

from ..generation.cache import DynamicCache


@dataclass
class TinyConfig:
    """
    Configuration for TinyCausalLM.

    Args:
        vocab_size: Size of vocabulary.
        d_model: Model dimension.
        n_heads: Number of attention heads.
        max_seq_len: Maximum sequence length (prompt + generated).
        initializer_range: Standard deviation for weight initialization.
    """

    vocab_size: int = 64
    d_model: int = 32
    n_heads: int = 2
    max_seq_len: int = 128
    initializer_range: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TinyConfig":
        """Create config from dictionary."""
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


class TinyCausalLM(nn.Module):
    """
    Decoder-only transformer with one causal self-attention layer.

    Args:
        config: TinyConfig with model hyperparameters.

    Example:
        >>> model = TinyCausalLM(TinyConfig(vocab_size=64))
        >>> logits, cache = model.step(torch.tensor([[5, 6, 7]]))
        >>> logits, cache = model.step(torch.tensor([[8]]), cache=cache)
    """

    def __init__(self, config: Optional[TinyConfig] = None):
        super().__init__()
        config = config or TinyConfig()
        assert config.d_model % config.n_heads == 0, "d_model must be divisible by n_heads"

        self.config = config
        self.n_heads = config.n_heads
        self.d_k = config.d_model // config.n_heads

        self.embedding = nn.Embedding(config.vocab_size, config.d_model)
        self.position = nn.Embedding(config.max_seq_len, config.d_model)
        self.w_qkv = nn.Linear(config.d_model, 3 * config.d_model, bias=False)
        self.w_o = nn.Linear(config.d_model, config.d_model, bias=False)
        self.final_norm = nn.LayerNorm(config.d_model)
        self.lm_head = nn.Linear(config.d_model, config.vocab_size, bias=False)

        self.apply(self._init_weights)
        self.eval()

    def _init_weights(self, module: nn.Module):
        if isinstance(module, (nn.Linear, nn.Embedding)):
            nn.init.normal_(module.weight, mean=0.0, std=self.config.initializer_range)

    def forward(
        self,
        input_ids: torch.Tensor,
        attention_mask: Optional[torch.Tensor] = None,
        cache: Optional[DynamicCache] = None,
    ) -> Tuple[torch.Tensor, Optional[DynamicCache]]:
        """
        Forward pass.

        Args:
            input_ids: Token IDs of shape (batch, seq_len). With a non-empty
                cache, only the new tokens.
            attention_mask: Mask of shape (batch, past_len + seq_len),
                1 for real tokens and 0 for left padding.
            cache: Optional cache, updated in place.

        Returns:
            Tuple of:
            - Logits of shape (batch, seq_len, vocab_size)
            - The cache (or None)
        """
        batch_size, seq_len = input_ids.shape
        past_len = cache.get_seq_len() if cache is not None else 0
        total_len = past_len + seq_len

        if attention_mask is None:
            attention_mask = torch.ones(batch_size, total_len, dtype=torch.long, device=input_ids.device)

        # Positions count real tokens only, so left padding does not shift them
        positions = (attention_mask.long().cumsum(-1) - 1).clamp(min=0)[:, -seq_len:]
        hidden_states = self.embedding(input_ids) + self.position(positions)

        qkv = self.w_qkv(hidden_states).view(batch_size, seq_len, 3, self.n_heads, self.d_k)
        q, k, v = qkv.permute(2, 0, 3, 1, 4)

        if cache is not None:
            k, v = cache.update(0, k, v)

        scores = torch.matmul(q, k.transpose(-2, -1)) / math.sqrt(self.d_k)

        causal = torch.ones(seq_len, total_len, dtype=torch.bool, device=input_ids.device)
        causal = causal.tril(diagonal=past_len)
        keep = causal.view(1, 1, seq_len, total_len) & attention_mask.bool().view(batch_size, 1, 1, total_len)

        # Finite fill keeps fully padded query rows from producing NaN
        scores = scores.masked_fill(~keep, torch.finfo(scores.dtype).min)
        weights = F.softmax(scores, dim=-1)

        attended = torch.matmul(weights, v).transpose(1, 2).contiguous()
        attended = attended.view(batch_size, seq_len, self.config.d_model)
        hidden_states = hidden_states + self.w_o(attended)

        logits = self.lm_head(self.final_norm(hidden_states))
        return logits, cache

    @torch.no_grad()
    def step(
        self,
        input_ids: torch.Tensor,
        cache: Optional[DynamicCache] = None,
        attention_mask: Optional[torch.Tensor] = None,
    ) -> Tuple[torch.Tensor, DynamicCache]:
        """
        One decoding step for the generation engine.

        Returns:
            Tuple of last-position logits (batch, vocab_size) and the cache.
        """
        if cache is None:
            cache = DynamicCache(n_layers=1)
        logits, cache = self.forward(input_ids, attention_mask=attention_mask, cache=cache)
        return logits[:, -1, :], cache
