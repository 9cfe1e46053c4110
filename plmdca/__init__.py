"""Pseudolikelihood-maximization direct coupling analysis (plmDCA)."""

from .backend import FieldsAndCouplings, free_fields_and_couplings, plmdca_backend, run_plmdca
from .config import Biomolecule, RunConfig
from .errors import AllocationError, ConfigurationError, EngineError, PlmDCAError
from .lbfgs import LbfgsStatus

__all__ = [
    "Biomolecule",
    "RunConfig",
    "FieldsAndCouplings",
    "plmdca_backend",
    "run_plmdca",
    "free_fields_and_couplings",
    "LbfgsStatus",
    "PlmDCAError",
    "ConfigurationError",
    "AllocationError",
    "EngineError",
]
