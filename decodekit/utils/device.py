"""Device management utilities for CPU/CUDA/MPS support."""

from typing import Union, Dict
import torch


def get_device(prefer_gpu: bool = True) -> torch.device:
    """
    Auto-detect and return the best available device.

    Priority: CUDA > MPS > CPU

    Args:
        prefer_gpu: If False, always return CPU device.

    Returns:
        torch.device: The selected device.

    Example:
        >>> device = get_device()
        >>> model = model.to(device)
    """
    if not prefer_gpu:
        return torch.device("cpu")

    if torch.cuda.is_available():
        return torch.device("cuda")
    elif hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        return torch.device("mps")
    else:
        return torch.device("cpu")


def to_device(
    data: Union[torch.Tensor, Dict[str, torch.Tensor], list, tuple],
    device: torch.device
) -> Union[torch.Tensor, Dict[str, torch.Tensor], list, tuple]:
    """
    Move tensor(s) to the specified device.

    Handles single tensors, dictionaries of tensors, and nested structures.

    Args:
        data: Tensor or collection of tensors to move.
        device: Target device.

    Returns:
        Data moved to the specified device.

    Example:
        >>> input_ids, mask = to_device((input_ids, mask), device)
    """
    if isinstance(data, torch.Tensor):
        return data.to(device)
    elif isinstance(data, dict):
        return {k: to_device(v, device) for k, v in data.items()}
    elif isinstance(data, list):
        return [to_device(item, device) for item in data]
    elif isinstance(data, tuple):
        return tuple(to_device(item, device) for item in data)
    else:
        return data
