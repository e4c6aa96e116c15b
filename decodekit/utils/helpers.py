"""Helper utilities for reproducibility, logging, and general tasks."""

import random
import logging
from typing import Optional, Union

import numpy as np
import torch
import torch.nn as nn


def set_seed(seed: int = 42) -> None:
    """
    Set random seeds for reproducibility across all libraries.

    Generation itself only draws from the generator passed to it; this is
    for model initialization and test setup.

    Args:
        seed: Random seed value.

    Example:
        >>> set_seed(42)
        >>> model = TinyCausalLM(vocab_size=32)
    """
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)

    if torch.cuda.is_available():
        torch.cuda.manual_seed(seed)
        torch.cuda.manual_seed_all(seed)


def create_generator(
    seed: Optional[int] = None,
    device: Union[str, torch.device] = "cpu",
) -> torch.Generator:
    """
    Create the random source used for sampling.

    Args:
        seed: Seed value. If None, the generator is seeded non-deterministically.
        device: Device the generator draws on (must match the sampled tensors).

    Returns:
        A torch.Generator owned by the caller.

    Example:
        >>> generator = create_generator(seed=0)
        >>> output = generate(model, prompts, do_sample=True, generator=generator)
    """
    generator = torch.Generator(device=device)
    if seed is None:
        generator.seed()
    else:
        generator.manual_seed(seed)
    return generator


def count_parameters(model: nn.Module, trainable_only: bool = True) -> int:
    """
    Count the number of parameters in a model.

    Args:
        model: PyTorch model.
        trainable_only: If True, count only trainable parameters.

    Returns:
        Total number of parameters.
    """
    if trainable_only:
        return sum(p.numel() for p in model.parameters() if p.requires_grad)
    return sum(p.numel() for p in model.parameters())


def format_number(num: int) -> str:
    """
    Format a large number with K/M/B suffixes.

    Example:
        >>> format_number(1_500_000)
        '1.50M'
    """
    if num >= 1_000_000_000:
        return f"{num / 1_000_000_000:.2f}B"
    elif num >= 1_000_000:
        return f"{num / 1_000_000:.2f}M"
    elif num >= 1_000:
        return f"{num / 1_000:.2f}K"
    else:
        return str(num)


def get_logger(
    name: str,
    level: int = logging.INFO,
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Create and configure a logger.

    Args:
        name: Logger name (typically __name__).
        level: Logging level.
        format_string: Custom format string for log messages.

    Returns:
        Configured logger instance.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Generation started")
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid adding handlers if they already exist
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(level)

        if format_string is None:
            format_string = "[%(asctime)s] %(levelname)s - %(name)s - %(message)s"

        formatter = logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
