#!/usr/bin/env python
"""
Generation demo script.

Decodes token-id prompts with a randomly initialized TinyCausalLM.

Usage:
    python scripts/generate.py --prompt "5 6 7" --prompt "9 3"
    python scripts/generate.py --config configs/generation.yaml --prompt "5 6 7" --beam_width 4
    python scripts/generate.py --prompt "1 2" --do_sample --temperature 0.8 --top_p 0.9 --seed 0
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from decodekit.utils import (
    load_config,
    merge_configs,
    set_seed,
    create_generator,
    get_device,
    get_logger,
    count_parameters,
    format_number,
)
from decodekit.models import TinyCausalLM, TinyConfig
from decodekit.generation import GenerationConfig, GenerationError, generate


logger = get_logger(__name__)

# Options that can be overridden from the command line
OVERRIDES = (
    "max_length",
    "min_length",
    "beam_width",
    "temperature",
    "top_k",
    "top_p",
    "repetition_penalty",
    "no_repeat_ngram_size",
    "length_penalty",
    "num_return_sequences",
)


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Generate token sequences with a tiny model")

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML config with 'generation' and optional 'model' sections",
    )
    parser.add_argument(
        "--prompt",
        type=str,
        action="append",
        default=None,
        help="Space-separated token ids (repeat for a batch)",
    )
    parser.add_argument("--max_length", type=int, default=None, help="Maximum generated tokens")
    parser.add_argument("--min_length", type=int, default=None, help="Minimum generated tokens")
    parser.add_argument("--beam_width", type=int, default=None, help="Number of beams (1 = greedy/sampling)")
    parser.add_argument("--do_sample", action="store_true", help="Sample instead of greedy/beam search")
    parser.add_argument("--temperature", type=float, default=None, help="Sampling temperature")
    parser.add_argument("--top_k", type=int, default=None, help="Top-k filtering (0 to disable)")
    parser.add_argument("--top_p", type=float, default=None, help="Top-p filtering (1.0 to disable)")
    parser.add_argument("--repetition_penalty", type=float, default=None, help="Repetition penalty (1.0 to disable)")
    parser.add_argument("--no_repeat_ngram_size", type=int, default=None, help="Block repeated n-grams (0 to disable)")
    parser.add_argument("--length_penalty", type=float, default=None, help="Length penalty exponent")
    parser.add_argument("--num_return_sequences", type=int, default=None, help="Sequences per prompt")
    parser.add_argument("--eos", type=int, action="append", default=None, help="EOS token id (repeatable)")
    parser.add_argument("--seed", type=int, default=0, help="Random seed for model weights and sampling")
    parser.add_argument("--cpu", action="store_true", help="Force CPU")

    return parser.parse_args()


def build_config(args) -> dict:
    """Merge the YAML config with command line overrides."""
    config = load_config(args.config) if args.config else {}
    config = config or {}

    overrides = {name: getattr(args, name) for name in OVERRIDES if getattr(args, name) is not None}
    if args.do_sample:
        overrides["do_sample"] = True
    if args.eos:
        overrides["eos_token_ids"] = args.eos

    return merge_configs(config, {"generation": overrides})


def main():
    """Main generation function."""
    args = parse_args()
    config = build_config(args)

    # Show the engine's INFO messages alongside the script's own
    get_logger("decodekit")

    set_seed(args.seed)
    device = get_device(prefer_gpu=not args.cpu)
    logger.info(f"Using device: {device}")

    try:
        generation_config = GenerationConfig.from_dict(config.get("generation", {}))
    except GenerationError as e:
        logger.error(f"Invalid generation config: {e}")
        sys.exit(1)

    model = TinyCausalLM(TinyConfig.from_dict(config.get("model", {}))).to(device)
    logger.info(f"Model parameters: {format_number(count_parameters(model))}")

    prompts = [[int(t) for t in p.split()] for p in (args.prompt or ["1"])]
    generator = create_generator(seed=args.seed, device=device)

    try:
        output = generate(model, prompts, generation_config, generator=generator)
    except GenerationError as e:
        logger.error(f"Generation failed: {e}")
        sys.exit(1)

    print("-" * 50)
    for prompt, ranked in zip(prompts, output.sequences):
        print(f"Prompt: {prompt}")
        for rank, seq in enumerate(ranked, start=1):
            flag = " (truncated)" if seq.truncated else ""
            print(f"  {rank}. score={seq.score:.4f} tokens={seq.tokens}{flag}")
    print("-" * 50)


if __name__ == "__main__":
    main()
