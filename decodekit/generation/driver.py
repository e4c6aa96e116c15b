"""
Step driver: the autoregressive decoding loop.

Every step batches the live hypotheses of all unfinished inputs into one
model call, processes the logits, selects continuations with the configured
strategy and updates the per-input beam tables until every input is done.
"""

import logging
import numbers
from typing import Any, List, Optional, Sequence, Union

import torch

from ..utils.device import to_device
from ..utils.helpers import create_generator
from .cache import CacheArena
from .config import GenerationConfig
from .errors import InvalidConfig, ModelInferenceError, SearchExhausted
from .hypotheses import BatchItem, Hypothesis
from .model import as_step_model, get_model_device
from .output import GenerationOutput, assemble_outputs
from .processors import process_scores
from .strategies import SearchStrategy


logger = logging.getLogger(__name__)


def is_cancelled(cancellation: Any) -> bool:
    """
    Check a cooperative cancellation signal.

    Accepts None, objects with ``is_set()`` (e.g. ``threading.Event``),
    zero-argument callables and plain booleans.
    """
    if cancellation is None:
        return False
    if hasattr(cancellation, "is_set"):
        return bool(cancellation.is_set())
    if callable(cancellation):
        return bool(cancellation())
    return bool(cancellation)


def prepare_prompts(
    input_ids: Union[torch.Tensor, Sequence[Sequence[int]], Sequence[int]],
    config: GenerationConfig,
    attention_mask: Optional[torch.Tensor] = None,
) -> List[List[int]]:
    """
    Normalize caller inputs into a list of prompt id lists.

    Args:
        input_ids: A 2-D tensor, a list of id lists, or a single id list.
        config: Generation config (for ``bos_token_id``).
        attention_mask: Optional mask for tensor inputs; masked positions
            are removed.

    Raises:
        InvalidConfig: If inputs are malformed or a prompt is empty and no
            ``bos_token_id`` is configured.
    """
    if isinstance(input_ids, torch.Tensor):
        if input_ids.dim() == 1:
            input_ids = input_ids.unsqueeze(0)
        if input_ids.dim() != 2:
            raise InvalidConfig(f"input_ids must be 1-D or 2-D, got shape {tuple(input_ids.shape)}")
        if attention_mask is not None:
            if attention_mask.shape != input_ids.shape:
                raise InvalidConfig("attention_mask must have the same shape as input_ids")
            prompts = [
                [int(t) for t, m in zip(row, mask) if m]
                for row, mask in zip(input_ids.tolist(), attention_mask.tolist())
            ]
        else:
            prompts = input_ids.tolist()
    else:
        input_ids = list(input_ids)
        if input_ids and all(isinstance(t, numbers.Integral) for t in input_ids):
            input_ids = [input_ids]
        prompts = [[int(t) for t in prompt] for prompt in input_ids]

    if not prompts:
        raise InvalidConfig("input_ids must contain at least one sequence")

    for i, prompt in enumerate(prompts):
        if any(t < 0 for t in prompt):
            raise InvalidConfig(f"Prompt {i} contains negative token ids")
        if not prompt:
            if config.bos_token_id is None:
                raise InvalidConfig(
                    f"Prompt {i} is empty and no bos_token_id is configured"
                )
            prompt.append(config.bos_token_id)

    return prompts


class StepDriver:
    """
    Runs the decoding loop for one generation call.

    All search state lives on the driver instance, so separate calls never
    share mutable state. The model is borrowed for the duration of the call.

    Args:
        model: Step model (or a module/callable adapted by ``as_step_model``).
        config: Generation configuration.
        generator: Random source for sampling strategies.
        cancellation: Cooperative cancellation signal checked once per step.
    """

    def __init__(
        self,
        model: Any,
        config: GenerationConfig,
        generator: Optional[torch.Generator] = None,
        cancellation: Any = None,
    ):
        self.model = as_step_model(model)
        self.config = config
        self.strategy = SearchStrategy.from_config(config)
        self.cancellation = cancellation
        self.device = get_model_device(self.model) or get_model_device(model)

        if generator is None and self.strategy.samples:
            generator = create_generator()
        self.generator = generator

        self.pad_token_id = config.effective_pad_token_id
        self.arena = CacheArena()
        self.items: List[BatchItem] = []
        self.max_prompt_len = 0
        self.cur_len = 0

    def run(self, prompts: Sequence[Sequence[int]]) -> GenerationOutput:
        """Decode ``prompts`` and return ranked outputs."""
        config = self.config
        self.items = [BatchItem.create(i, prompt, config) for i, prompt in enumerate(prompts)]
        self.max_prompt_len = max(len(item.prompt) for item in self.items)
        self.cur_len = 0
        self.arena.reset()

        logger.info(
            "Generating with %s: batch=%d, beam_width=%d, max_length=%d",
            self.strategy.value, len(self.items), config.beam_width, config.max_length,
        )

        # One step per generated token; crossing this means termination is broken
        max_steps = config.max_length + 1
        cancelled = False
        step = 0

        while True:
            active = [item for item in self.items if not item.done]
            if not active:
                break

            if is_cancelled(self.cancellation):
                cancelled = True
                logger.warning(
                    "Generation cancelled after %d steps; returning best-so-far hypotheses",
                    step,
                )
                break

            if step >= max_steps:
                raise SearchExhausted(
                    f"Decoding exceeded {max_steps} steps with {len(active)} unfinished inputs"
                )

            self._step(active)
            step += 1

        unfinished = sum(
            1 for item in self.items
            if len(item.finished) < config.num_return_sequences and item.hypotheses
        )
        if unfinished:
            logger.warning("Forcibly finalizing hypotheses for %d inputs", unfinished)

        return assemble_outputs(self.items, config, cancelled=cancelled)

    def _step(self, active: List[BatchItem]) -> None:
        config = self.config
        live = []
        for item in active:
            assert len(item.hypotheses) <= item.beam_width, "beam count exceeds beam width"
            live.extend(item.hypotheses)
        for slot, hyp in enumerate(live):
            hyp.slot = slot

        logger.debug("Step %d: %d live hypotheses over %d inputs", self.cur_len, len(live), len(active))

        logits = self._forward(live)
        processed = process_scores(
            logits,
            [hyp.history for hyp in live],
            config,
            cur_len=self.cur_len,
            sampling=self.strategy.samples,
            min_tokens_to_keep=self.strategy.min_tokens_to_keep,
        )
        # Cumulative scores stay in float64 on the CPU, matching Hypothesis.score
        beam_scores = torch.tensor([hyp.score for hyp in live], dtype=torch.float64)

        offset = 0
        for item in active:
            rows = slice(offset, offset + len(item.hypotheses))
            candidates = self.strategy.select(
                processed.log_probs[rows],
                processed.filtered[rows],
                beam_scores[rows],
                beam_width=config.beam_width,
                generator=self.generator,
            )
            offset += len(item.hypotheses)
            item.advance(candidates, config)

        self.cur_len += 1

        # Follow surviving hypotheses to their parent rows
        parents = [hyp.slot for item in self.items if not item.done for hyp in item.hypotheses]
        self.arena.reorder(parents)

    def _forward(self, live: List[Hypothesis]) -> torch.Tensor:
        """Run the model on every live hypothesis and return (rows, vocab) logits."""
        total_len = self.max_prompt_len + self.cur_len
        attention_mask = torch.zeros(len(live), total_len, dtype=torch.long)

        if self.arena.is_empty:
            input_ids = torch.full((len(live), total_len), self.pad_token_id, dtype=torch.long)
        else:
            input_ids = torch.tensor([[hyp.last_token] for hyp in live], dtype=torch.long)

        # Left padding keeps the newest token in the last column
        for row, hyp in enumerate(live):
            history = hyp.history
            attention_mask[row, total_len - len(history):] = 1
            if self.arena.is_empty:
                input_ids[row, total_len - len(history):] = torch.tensor(history, dtype=torch.long)

        if self.device is not None:
            input_ids, attention_mask = to_device((input_ids, attention_mask), self.device)

        try:
            logits, cache = self.model.step(
                input_ids, cache=self.arena.cache, attention_mask=attention_mask
            )
        except Exception as exc:
            raise ModelInferenceError(f"Model step failed: {exc}") from exc

        if not isinstance(logits, torch.Tensor) or logits.dim() not in (2, 3):
            raise ModelInferenceError(
                f"Model returned invalid logits: expected a 2-D or 3-D tensor, got {type(logits).__name__}"
                + (f" of shape {tuple(logits.shape)}" if isinstance(logits, torch.Tensor) else "")
            )
        if logits.dim() == 3:
            logits = logits[:, -1, :]
        if logits.size(0) != len(live):
            raise ModelInferenceError(
                f"Model returned logits for {logits.size(0)} rows, expected {len(live)}"
            )

        self.arena.update(cache, len(live))
        return logits


@torch.no_grad()
def generate(
    model: Any,
    input_ids: Union[torch.Tensor, Sequence[Sequence[int]], Sequence[int]],
    config: Optional[GenerationConfig] = None,
    cancellation: Any = None,
    generator: Optional[torch.Generator] = None,
    attention_mask: Optional[torch.Tensor] = None,
    **kwargs,
) -> GenerationOutput:
    """
    Generate continuations for a batch of prompts.

    Args:
        model: Step model, ``nn.Module`` returning logits, or callable.
        input_ids: Prompts as a 2-D tensor, a list of id lists, or one id list.
        config: Generation configuration.
        cancellation: Cooperative cancellation signal (``threading.Event``,
            callable or bool). When set, decoding stops and the best-so-far
            hypotheses are returned.
        generator: Random source for sampling.
        attention_mask: Padding mask for tensor inputs.
        **kwargs: Override config parameters.

    Returns:
        GenerationOutput with ranked sequences per input.

    Raises:
        InvalidConfig: Invalid parameters, detected before any model call.
        ModelInferenceError: The model failed; no partial output.
        SearchExhausted: Decoding did not terminate within its step ceiling.

    Example:
        >>> output = generate(model, [[5, 6, 7]], max_length=20, beam_width=4,
        ...                   eos_token_ids=(2,))
        >>> output[0][0].tokens
    """
    if config is None:
        config = GenerationConfig()
    if kwargs:
        config = config.replace(**kwargs)

    prompts = prepare_prompts(input_ids, config, attention_mask)
    return StepDriver(model, config, generator=generator, cancellation=cancellation).run(prompts)
