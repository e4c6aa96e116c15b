"""
Model collaborator interface.

The generation engine never runs a network itself. It talks to anything
that implements ``step(input_ids, cache, attention_mask) -> (logits, cache)``.
"""

from typing import Any, Callable, Optional, Protocol, Tuple

import torch
import torch.nn as nn


class StepModel(Protocol):
    """
    Protocol for models driven by the step driver.

    ``input_ids`` holds the full left-padded sequences when ``cache`` is
    None and only the newest token per row otherwise. ``attention_mask``
    always covers the full sequence (1 = real token, 0 = padding).
    Logits may be (rows, vocab_size) or (rows, seq_len, vocab_size).
    Returning ``None`` as the cache makes the next call resend full
    sequences.
    """

    def step(
        self,
        input_ids: torch.Tensor,
        cache: Any = None,
        attention_mask: Optional[torch.Tensor] = None,
    ) -> Tuple[torch.Tensor, Any]:
        ...


class CallableStepModel:
    """
    Wrap a plain function as a step model.

    Args:
        fn: Callable taking ``(input_ids, cache, attention_mask)`` and
            returning ``(logits, new_cache)``.

    Example:
        >>> model = CallableStepModel(lambda ids, cache, mask: (my_logits(ids), None))
    """

    def __init__(self, fn: Callable[..., Tuple[torch.Tensor, Any]]):
        self.fn = fn

    def step(self, input_ids, cache=None, attention_mask=None):
        return self.fn(input_ids, cache, attention_mask)


class FullSequenceModel:
    """
    Adapt an ``nn.Module`` that maps full sequences to logits.

    The module is called on the whole sequence at every step (no cache).
    Its output may be logits or a tuple whose first element is logits.

    Args:
        module: Language model with a forward method.
        use_attention_mask: Pass ``attention_mask`` to the forward method.
    """

    def __init__(self, module: nn.Module, use_attention_mask: bool = False):
        self.module = module
        self.use_attention_mask = use_attention_mask

    @property
    def device(self) -> Optional[torch.device]:
        return get_model_device(self.module)

    def step(self, input_ids, cache=None, attention_mask=None):
        if self.use_attention_mask:
            outputs = self.module(input_ids, attention_mask=attention_mask)
        else:
            outputs = self.module(input_ids)
        if isinstance(outputs, tuple):
            outputs = outputs[0]
        return outputs, None


def get_model_device(model: Any) -> Optional[torch.device]:
    """Device of the model's parameters or ``device`` attribute, if any."""
    device = getattr(model, "device", None)
    if isinstance(device, torch.device):
        return device
    if isinstance(model, nn.Module):
        for param in model.parameters():
            return param.device
    return None


def as_step_model(model: Any) -> StepModel:
    """
    Return ``model`` as something with a ``step`` method.

    Raises:
        TypeError: If the object cannot be adapted.
    """
    if hasattr(model, "step"):
        return model
    if isinstance(model, nn.Module):
        return FullSequenceModel(model)
    if callable(model):
        return CallableStepModel(model)
    raise TypeError(f"Cannot use {type(model).__name__} as a step model")
