"""
Reference language models.

This module contains:
- TinyCausalLM: a small decoder-only transformer implementing the step
  model protocol with incremental decoding
"""

from .tiny import TinyConfig, TinyCausalLM

__all__ = [
    "TinyConfig",
    "TinyCausalLM",
]
