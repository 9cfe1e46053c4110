"""Entry points for running plmDCA on an alignment file.

``plmdca_backend`` validates the run configuration, builds the alignment
model and gradient engine, and drives the optimization. The resulting
fields-and-couplings vector is handed to the caller, who releases it with
``free_fields_and_couplings``.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np

from plmdca_logging.logging_config import VerboseLogging

from .alignment import AlignmentModel
from .config import Biomolecule, RunConfig
from .lbfgs import LbfgsStatus
from .objective import ObjectiveFunction, ProgressHook
from .parameters import num_fields_and_couplings, split_fields_and_couplings
from .pseudolikelihood import PlmDCA

__all__ = [
    "FieldsAndCouplings",
    "plmdca_backend",
    "run_plmdca",
    "free_fields_and_couplings",
]

logger = logging.getLogger(__name__)


@dataclass
class FieldsAndCouplings:
    """Optimization result: fields followed by couplings, plus the run status.

    The vector is valid whatever the status; a non-success status only means
    it is not necessarily optimal.
    """

    values: Optional[np.ndarray]
    status: LbfgsStatus
    fx: float
    seqs_len: int
    num_site_states: int
    released: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        assert self.values is not None, "result needs a buffer"
        assert self.values.shape == (num_fields_and_couplings(self.seqs_len, self.num_site_states),), (
            "buffer length does not match L and Q"
        )

    def __len__(self) -> int:
        return 0 if self.values is None else int(self.values.shape[0])

    def split(self) -> Tuple[np.ndarray, np.ndarray]:
        """(h of shape (L, Q), J of shape (P, Q, Q))."""
        if self.values is None:
            raise RuntimeError("fields and couplings have been released")
        return split_fields_and_couplings(self.values, self.seqs_len, self.num_site_states)

    def fields(self) -> np.ndarray:
        return self.split()[0]

    def couplings(self) -> np.ndarray:
        return self.split()[1]

    def release(self) -> None:
        if self.released:
            raise RuntimeError("fields and couplings were already released")
        self.values = None
        self.released = True


def run_plmdca(
    config: RunConfig,
    progress_hooks: Optional[List[ProgressHook]] = None,
) -> Optional[FieldsAndCouplings]:
    """Run plmDCA for one configuration.

    Returns None when the parameter buffer could not be allocated.

    Raises:
        ConfigurationError: invalid configuration, raised before any work.
    """
    config.validate()
    with VerboseLogging() if config.verbose else nullcontext():
        return _run(config, progress_hooks or [])


def _run(config: RunConfig, progress_hooks: List[ProgressHook]) -> Optional[FieldsAndCouplings]:
    alignment = AlignmentModel.from_fasta(config.msa_file, config.biomolecule, config.num_site_states, config.seqid)
    if alignment.seqs_len != config.seqs_len:
        raise ValueError(f"alignment length {alignment.seqs_len} does not match seqs_len {config.seqs_len}")

    total_num_params = num_fields_and_couplings(config.seqs_len, config.num_site_states)
    with PlmDCA(alignment, config.lambda_h, config.lambda_J, config.num_threads) as engine:
        fun = ObjectiveFunction(engine, max_iterations=config.max_iterations, verbose=config.verbose)
        fun.on_progress.extend(progress_hooks)
        status = fun.run(total_num_params)
    logger.debug("plmDCA run finished with status %s, fx = %f", status.name, fun.fx)

    h_and_J = fun.get_fields_and_couplings()
    if h_and_J is None:
        return None
    return FieldsAndCouplings(
        values=h_and_J,
        status=status,
        fx=fun.fx,
        seqs_len=config.seqs_len,
        num_site_states=config.num_site_states,
    )


def plmdca_backend(
    biomolecule: Union[Biomolecule, int],
    num_site_states: int,
    msa_file: Union[str, Path],
    seqs_len: int,
    seqid: float,
    lambda_h: float,
    lambda_J: float,
    max_iteration: int,
    num_threads: int = 1,
    verbose: bool = False,
) -> Optional[FieldsAndCouplings]:
    """Interface for running plmDCA from host code.

    Args:
        biomolecule: Type of biomolecule (protein or RNA).
        num_site_states: Number of states/residues plus gap.
        msa_file: Path to the FASTA formatted MSA file.
        seqs_len: The length of sequences in the MSA.
        seqid: Sequence identity threshold.
        lambda_h: Regularization parameter for fields.
        lambda_J: Regularization parameter for couplings.
        max_iteration: Maximum number of gradient descent iterations.
        num_threads: Number of worker threads for the gradient.
        verbose: Log iteration diagnostics to stderr.
    Returns:
        Fields and couplings, or None if the buffer could not be allocated.
    """
    config = RunConfig(
        biomolecule=biomolecule,
        num_site_states=num_site_states,
        msa_file=msa_file,
        seqs_len=seqs_len,
        seqid=seqid,
        lambda_h=lambda_h,
        lambda_J=lambda_J,
        max_iterations=max_iteration,
        num_threads=num_threads,
        verbose=verbose,
    )
    return run_plmdca(config)


def free_fields_and_couplings(h_and_J: Optional[FieldsAndCouplings]) -> None:
    """Release a result returned by ``plmdca_backend``; None is ignored."""
    if h_and_J is None:
        return
    h_and_J.release()
