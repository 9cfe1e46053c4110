"""Alignment model: encoded MSA, sequence weights and one-hot statistics.

Sequences are read from FASTA with Biopython and encoded into integer site
states. The gap symbol is always the last state of an alphabet; residues
outside the alphabet are treated as gaps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence, Union

import numpy as np
from Bio import AlignIO
from scipy.spatial.distance import pdist, squareform

from .config import Biomolecule

__all__ = [
    "PROTEIN_RESIDUES",
    "RNA_RESIDUES",
    "GAP",
    "alphabet_for",
    "encode_sequences",
    "read_alignment",
    "compute_sequence_weights",
    "AlignmentModel",
]

logger = logging.getLogger(__name__)

PROTEIN_RESIDUES = "ACDEFGHIKLMNPQRSTVWY"
RNA_RESIDUES = "ACGU"
GAP = "-"


def alphabet_for(biomolecule: Biomolecule) -> str:
    """Residue letters followed by the gap symbol."""
    if Biomolecule(biomolecule) is Biomolecule.PROTEIN:
        return PROTEIN_RESIDUES + GAP
    return RNA_RESIDUES + GAP


def encode_sequences(sequences: Sequence[str], biomolecule: Biomolecule) -> np.ndarray:
    """Map aligned sequences to an (M, L) integer matrix of site states."""
    alphabet = alphabet_for(biomolecule)
    gap_state = len(alphabet) - 1
    lookup: Dict[str, int] = {c: i for i, c in enumerate(alphabet)}
    if Biomolecule(biomolecule) is Biomolecule.RNA:
        # DNA-style input
        lookup["T"] = lookup["U"]
    assert len(sequences) > 0, "alignment has no sequences"
    seqs_len = len(sequences[0])
    rows: List[List[int]] = []
    for seq in sequences:
        assert len(seq) == seqs_len, "aligned sequences must share one length"
        rows.append([lookup.get(c, gap_state) for c in seq.upper()])
    return np.asarray(rows, dtype=np.int64)


def read_alignment(msa_file: Union[str, Path], biomolecule: Biomolecule) -> np.ndarray:
    """Read a FASTA alignment and return its encoded state matrix."""
    with open(msa_file, "r") as fh:
        alignment = AlignIO.read(fh, "fasta")
    sequences = [str(record.seq) for record in alignment]
    logger.debug("Read %d sequences of length %d from %s", len(sequences), alignment.get_alignment_length(), msa_file)
    return encode_sequences(sequences, biomolecule)


def compute_sequence_weights(states: np.ndarray, seqid: float) -> np.ndarray:
    """Weight of each sequence: 1 / number of sequences with identity >= seqid.

    The count includes the sequence itself, so every weight is in (0, 1].
    """
    assert states.ndim == 2, "states must be an (M, L) matrix"
    assert 0.0 <= seqid <= 1.0, "seqid must be within [0, 1]"
    num_seqs = states.shape[0]
    if num_seqs == 1:
        return np.ones(1, dtype=float)
    identity = 1.0 - squareform(pdist(states, "hamming"))
    similar = (identity >= seqid).astype(float)
    return 1.0 / np.sum(similar, axis=-1)


@dataclass(frozen=True, eq=False)
class AlignmentModel:
    """Read-only alignment statistics shared by every gradient evaluation."""

    states: np.ndarray
    weights: np.ndarray
    num_site_states: int
    seqid: float
    one_hot: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        states = np.array(self.states, dtype=np.int64)
        weights = np.array(self.weights, dtype=float)
        assert states.ndim == 2 and states.shape[0] > 0, "alignment must be a non-empty (M, L) matrix"
        assert weights.shape == (states.shape[0],), "one weight per sequence"
        if states.min() < 0 or states.max() >= self.num_site_states:
            raise ValueError(
                f"alignment uses states outside [0, {self.num_site_states}); "
                f"found range [{int(states.min())}, {int(states.max())}]"
            )
        one_hot = np.eye(self.num_site_states, dtype=float)[states]
        for arr in (states, weights, one_hot):
            arr.setflags(write=False)
        object.__setattr__(self, "states", states)
        object.__setattr__(self, "weights", weights)
        object.__setattr__(self, "one_hot", one_hot)

    @classmethod
    def from_sequences(cls, states: np.ndarray, num_site_states: int, seqid: float) -> "AlignmentModel":
        states = np.asarray(states, dtype=np.int64)
        return cls(
            states=states,
            weights=compute_sequence_weights(states, seqid),
            num_site_states=num_site_states,
            seqid=seqid,
        )

    @classmethod
    def from_fasta(
        cls,
        msa_file: Union[str, Path],
        biomolecule: Biomolecule,
        num_site_states: int,
        seqid: float,
    ) -> "AlignmentModel":
        model = cls.from_sequences(read_alignment(msa_file, biomolecule), num_site_states, seqid)
        logger.debug(
            "Loaded alignment %s: %d sequences, length %d, Meff = %.3f",
            msa_file,
            model.num_sequences,
            model.seqs_len,
            model.meff,
        )
        return model

    @property
    def num_sequences(self) -> int:
        return int(self.states.shape[0])

    @property
    def seqs_len(self) -> int:
        return int(self.states.shape[1])

    @property
    def meff(self) -> float:
        """Effective number of sequences."""
        return float(np.sum(self.weights))
