"""
Incremental-decoding cache handling.

This module implements:
- A dynamic key-value cache models can use for incremental decoding
- Reordering of opaque model caches along the batch dimension
- The cache arena that maps live hypotheses to cache rows
"""

from typing import Any, List, Optional, Sequence, Tuple, Union

import torch


class DynamicCache:
    """
    Dynamic KV-cache that grows as needed.

    Keys and values are concatenated along the sequence axis and can be
    reordered along the batch axis when hypotheses are pruned or finish.

    Args:
        n_layers: Number of attention layers.

    Example:
        >>> cache = DynamicCache(n_layers=6)
        >>> keys, values = cache.update(layer_idx, keys, values)
        >>> cache.reorder(torch.tensor([0, 0, 1]))
    """

    def __init__(self, n_layers: int):
        self.n_layers = n_layers
        self.key_cache: List[Optional[torch.Tensor]] = [None] * n_layers
        self.value_cache: List[Optional[torch.Tensor]] = [None] * n_layers

    def update(
        self,
        layer_idx: int,
        keys: torch.Tensor,
        values: torch.Tensor,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Update cache for a specific layer.

        Args:
            layer_idx: Layer index.
            keys: New keys of shape (batch, n_heads, new_seq_len, head_dim).
            values: New values.

        Returns:
            Tuple of all cached keys and values for this layer.
        """
        if self.key_cache[layer_idx] is None:
            self.key_cache[layer_idx] = keys
            self.value_cache[layer_idx] = values
        else:
            self.key_cache[layer_idx] = torch.cat(
                [self.key_cache[layer_idx], keys], dim=2
            )
            self.value_cache[layer_idx] = torch.cat(
                [self.value_cache[layer_idx], values], dim=2
            )

        return self.key_cache[layer_idx], self.value_cache[layer_idx]

    def reorder(self, indices: torch.Tensor) -> "DynamicCache":
        """Select batch rows in ``indices`` order, in place."""
        for layer_idx in range(self.n_layers):
            if self.key_cache[layer_idx] is None:
                continue
            device = self.key_cache[layer_idx].device
            self.key_cache[layer_idx] = self.key_cache[layer_idx].index_select(0, indices.to(device))
            self.value_cache[layer_idx] = self.value_cache[layer_idx].index_select(0, indices.to(device))
        return self

    def get_seq_len(self) -> int:
        """Get current sequence length."""
        if self.key_cache[0] is not None:
            return self.key_cache[0].size(2)
        return 0

    def get_batch_size(self) -> int:
        """Get current number of cached rows."""
        if self.key_cache[0] is not None:
            return self.key_cache[0].size(0)
        return 0


def reorder_cache(cache: Any, indices: Union[torch.Tensor, Sequence[int]], batch_dim: int = 0) -> Any:
    """
    Reorder an opaque model cache along its batch dimension.

    Objects exposing ``reorder(indices)`` reorder themselves; tensors are
    index-selected; lists, tuples and dicts are handled recursively.
    Anything else is returned unchanged.

    Args:
        cache: Cache returned by the model.
        indices: Source row for every new row.
        batch_dim: Batch dimension of cached tensors.

    Returns:
        Reordered cache.

    Example:
        >>> past = reorder_cache(past, [0, 0, 2])
    """
    if not isinstance(indices, torch.Tensor):
        indices = torch.tensor(list(indices), dtype=torch.long)

    if cache is None:
        return None
    if hasattr(cache, "reorder"):
        return cache.reorder(indices)
    if isinstance(cache, torch.Tensor):
        return cache.index_select(batch_dim, indices.to(cache.device))
    if isinstance(cache, dict):
        return {k: reorder_cache(v, indices, batch_dim) for k, v in cache.items()}
    if isinstance(cache, list):
        return [reorder_cache(item, indices, batch_dim) for item in cache]
    if isinstance(cache, tuple):
        return tuple(reorder_cache(item, indices, batch_dim) for item in cache)
    return cache


class CacheArena:
    """
    Owns the model cache for one generation call.

    Row ``i`` of the cache belongs to the hypothesis whose slot is ``i``.
    After every step the arena is reordered by parent slot, so pruned or
    finished hypotheses drop out and surviving ones are renumbered without
    copying per-hypothesis state.

    Args:
        batch_dim: Batch dimension of cached tensors.
    """

    def __init__(self, batch_dim: int = 0):
        self.batch_dim = batch_dim
        self.cache: Any = None
        self.num_slots = 0

    @property
    def is_empty(self) -> bool:
        return self.cache is None

    def update(self, cache: Any, num_slots: int) -> None:
        """Store the cache returned by the latest model call."""
        self.cache = cache
        self.num_slots = num_slots

    def reorder(self, parent_slots: Sequence[int]) -> None:
        """Keep rows ``parent_slots`` (in that order) as the new slots 0..n-1."""
        parent_slots = list(parent_slots)
        if self.cache is None or parent_slots == list(range(self.num_slots)):
            self.num_slots = len(parent_slots)
            return
        self.cache = reorder_cache(self.cache, parent_slots, self.batch_dim)
        self.num_slots = len(parent_slots)

    def reset(self) -> None:
        """Drop the cache."""
        self.cache = None
        self.num_slots = 0
