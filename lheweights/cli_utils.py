from __future__ import annotations

import dataclasses
import logging
from pathlib import Path

from lheweights.weight_config import DEFAULT_PREFERRED_PDFS, WeightConfig, load_weight_config

logger = logging.getLogger(__name__)

_LHE_SUFFIXES = (".lhe.gz", ".lhe")


def build_config(args) -> WeightConfig:
    """Combine ``--config`` (if any) with explicit command-line overrides.

    Raises ConfigurationError when the named weight ids and labels end up
    with different lengths.
    """
    config = load_weight_config(args.config) if args.config else WeightConfig()

    overrides = {}
    if args.preferred_pdfs is not None:
        overrides["preferred_pdfs"] = args.preferred_pdfs
    if args.named_weight_ids is not None:
        overrides["named_weight_ids"] = args.named_weight_ids
    if args.named_weight_labels is not None:
        overrides["named_weight_labels"] = args.named_weight_labels
    if args.debug:
        overrides["debug"] = True

    if overrides:
        config = dataclasses.replace(config, **overrides)
    if config.preferred_pdfs != DEFAULT_PREFERRED_PDFS:
        logger.info("Preferred PDF sets: %s", ", ".join(map(str, config.preferred_pdfs)))
    return config


def validate_arguments(args) -> None:
    """Check CLI argument values before running."""
    if args.workers < 1:
        raise ValueError("--workers must be a positive integer")
    if args.chunksize < 1:
        raise ValueError("--chunksize must be a positive integer")
    for path in args.inputs:
        if not Path(path).is_file():
            raise FileNotFoundError(f"Input file not found: {path}")


def output_path_for(input_path: str | Path, outdir: str | Path, suffix: str = "_weights.root") -> Path:
    """``run_01.lhe.gz`` -> ``<outdir>/run_01_weights.root``."""
    name = Path(input_path).name
    for ext in _LHE_SUFFIXES:
        if name.endswith(ext):
            name = name[: -len(ext)]
            break
    else:
        name = Path(name).stem
    return Path(outdir) / f"{name}{suffix}"
