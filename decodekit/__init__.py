"""
decodekit - Autoregressive decoding engine.

This package turns next-token scores from any language model into ranked
output sequences with greedy decoding, sampling and beam search.
"""

__version__ = "0.1.0"

# Submodules are imported lazily to avoid import errors
# when optional dependencies are not installed
__all__ = ["utils", "models", "generation", "__version__"]


def __getattr__(name):
    """Lazy import submodules."""
    if name == "utils":
        from . import utils
        return utils
    elif name == "models":
        from . import models
        return models
    elif name == "generation":
        from . import generation
        return generation
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
