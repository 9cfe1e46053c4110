"""Run configuration for a single plmDCA optimization."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Union

from .errors import ConfigurationError

__all__ = [
    "Biomolecule",
    "RunConfig",
    "parallel_support_available",
]


class Biomolecule(IntEnum):
    PROTEIN = 1
    RNA = 2


def parallel_support_available() -> bool:
    """Whether this interpreter can run worker threads.

    WebAssembly builds of CPython (emscripten, wasi) ship without thread support.
    """
    return sys.platform not in ("emscripten", "wasi")


@dataclass(frozen=True)
class RunConfig:
    """Inputs of one optimization run; immutable once built."""

    biomolecule: Biomolecule
    num_site_states: int
    msa_file: Union[str, Path]
    seqs_len: int
    seqid: float = 0.8
    lambda_h: float = 1.0
    lambda_J: float = 20.0
    max_iterations: int = 500
    num_threads: int = 1
    verbose: bool = False

    def validate(self) -> "RunConfig":
        """Check the configuration; raises ConfigurationError before any work is done."""
        if self.num_threads < 1:
            raise ConfigurationError(f"num_threads must be >= 1, got {self.num_threads}")
        if self.num_threads > 1 and not parallel_support_available():
            raise ConfigurationError(
                f"Cannot set multiple threads ({self.num_threads}) when parallel execution is not supported"
            )
        try:
            Biomolecule(self.biomolecule)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown biomolecule {self.biomolecule!r}") from exc
        if self.num_site_states < 2:
            raise ConfigurationError("num_site_states must be >= 2")
        if self.seqs_len < 2:
            raise ConfigurationError("seqs_len must be >= 2")
        if not 0.0 <= float(self.seqid) <= 1.0:
            raise ConfigurationError(f"seqid must be within [0, 1], got {self.seqid}")
        if self.lambda_h < 0.0 or self.lambda_J < 0.0:
            raise ConfigurationError("regularization strengths must be non-negative")
        if self.max_iterations < 0:
            raise ConfigurationError("max_iterations must be non-negative")
        return self
