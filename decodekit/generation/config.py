"""Generation configuration."""

import math
from dataclasses import dataclass, asdict, fields, replace as dataclass_replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from ..utils.config import load_config
from .errors import InvalidConfig


@dataclass(frozen=True)
class GenerationConfig:
    """
    Immutable configuration for a generation call.

    Lengths count generated tokens only (EOS included); the prompt is not
    part of the length.

    Args:
        max_length: Hard cap on the number of generated tokens.
        min_length: EOS is not allowed before this many tokens.
        beam_width: Number of parallel hypotheses (1 = greedy/sampling).
        do_sample: Sample tokens instead of picking them deterministically.
        temperature: Softmax temperature (> 0).
        top_k: Keep only the k best tokens when sampling (0 to disable).
        top_p: Nucleus threshold when sampling (1.0 to disable).
        repetition_penalty: Penalty for tokens already in the history (1.0 to disable).
        no_repeat_ngram_size: Forbid repeating n-grams of this size (0 to disable).
        length_penalty: Exponent applied to the length when ranking finished sequences.
        early_stopping: Stop a beam search item once no live beam can beat the finished ones.
        num_return_sequences: Sequences returned per input (<= beam_width).
        eos_token_ids: Token ids that end a sequence.
        pad_token_id: Padding id for batched inputs and padded outputs.
            Defaults to the smallest EOS id, or 0.
        bos_token_id: Id used to seed an empty prompt.

    Example:
        >>> config = GenerationConfig(max_length=30, beam_width=4, eos_token_ids=(2,))
        >>> config = config.replace(num_return_sequences=2)
    """

    max_length: int = 20
    min_length: int = 0
    beam_width: int = 1
    do_sample: bool = False
    temperature: float = 1.0
    top_k: int = 0
    top_p: float = 1.0
    repetition_penalty: float = 1.0
    no_repeat_ngram_size: int = 0
    length_penalty: float = 1.0
    early_stopping: bool = False
    num_return_sequences: int = 1
    eos_token_ids: Tuple[int, ...] = ()
    pad_token_id: Optional[int] = None
    bos_token_id: Optional[int] = None

    def __post_init__(self):
        eos = self.eos_token_ids
        if isinstance(eos, int):
            eos = (eos,)
        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "eos_token_ids", tuple(sorted({int(t) for t in (eos or ())})))
        self.validate()

    def validate(self) -> None:
        """
        Check parameter ranges and combinations.

        Raises:
            InvalidConfig: If any parameter is out of range.
        """
        if self.beam_width < 1:
            raise InvalidConfig(f"beam_width must be >= 1, got {self.beam_width}")
        if not 1 <= self.num_return_sequences <= self.beam_width:
            raise InvalidConfig(
                "num_return_sequences must be between 1 and beam_width "
                f"({self.beam_width}), got {self.num_return_sequences}"
            )
        if self.min_length < 0:
            raise InvalidConfig(f"min_length must be >= 0, got {self.min_length}")
        if self.max_length < self.min_length:
            raise InvalidConfig(
                f"max_length ({self.max_length}) must be >= min_length ({self.min_length})"
            )
        if not self.temperature > 0:
            raise InvalidConfig(f"temperature must be > 0, got {self.temperature}")
        if not 0 < self.top_p <= 1:
            raise InvalidConfig(f"top_p must be in (0, 1], got {self.top_p}")
        if self.top_k < 0:
            raise InvalidConfig(f"top_k must be >= 0, got {self.top_k}")
        if not self.repetition_penalty >= 1:
            raise InvalidConfig(
                f"repetition_penalty must be >= 1, got {self.repetition_penalty}"
            )
        if self.no_repeat_ngram_size < 0:
            raise InvalidConfig(
                f"no_repeat_ngram_size must be >= 0, got {self.no_repeat_ngram_size}"
            )
        if not math.isfinite(self.length_penalty) or self.length_penalty < 0:
            raise InvalidConfig(
                f"length_penalty must be a finite value >= 0, got {self.length_penalty}"
            )
        for name, value in (("pad_token_id", self.pad_token_id), ("bos_token_id", self.bos_token_id)):
            if value is not None and value < 0:
                raise InvalidConfig(f"{name} must be >= 0, got {value}")
        if any(t < 0 for t in self.eos_token_ids):
            raise InvalidConfig(f"eos_token_ids must be >= 0, got {self.eos_token_ids}")

    @property
    def effective_pad_token_id(self) -> int:
        """Padding id, falling back to the smallest EOS id and then 0."""
        if self.pad_token_id is not None:
            return self.pad_token_id
        if self.eos_token_ids:
            return self.eos_token_ids[0]
        return 0

    def replace(self, **overrides) -> "GenerationConfig":
        """Return a validated copy with some fields replaced."""
        unknown = set(overrides) - {f.name for f in fields(self)}
        if unknown:
            raise InvalidConfig(f"Unknown generation options: {sorted(unknown)}")
        return dataclass_replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        d = asdict(self)
        d["eos_token_ids"] = list(self.eos_token_ids)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "GenerationConfig":
        """Create config from dictionary, ignoring unknown keys."""
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in d.items() if k in valid_keys}
        return cls(**filtered)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "GenerationConfig":
        """
        Load config from a YAML file.

        The file may hold the options at top level or under a
        ``generation`` section.
        """
        d = load_config(path) or {}
        if isinstance(d.get("generation"), dict):
            d = d["generation"]
        return cls.from_dict(d)

    def save(self, path: Union[str, Path]) -> None:
        """Save config to YAML file."""
        path = Path(path)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump({"generation": self.to_dict()}, f, default_flow_style=False)
