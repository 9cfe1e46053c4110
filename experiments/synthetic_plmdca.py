"""plmDCA on a synthetic RNA alignment with one planted co-varying site pair.

Example:
  uv run python -m experiments.synthetic_plmdca --num_seqs 200 --seqs_len 12 --threads 2
"""

from __future__ import annotations

import argparse
import tempfile
from pathlib import Path

import numpy as np

from plmdca.alignment import RNA_RESIDUES, GAP
from plmdca.backend import free_fields_and_couplings, run_plmdca
from plmdca.config import Biomolecule, RunConfig
from plmdca.scores import sorted_pair_scores
from plmdca_logging.metrics_log import log_records
from plmdca_logging.observability import OptimizationTracker


def make_alignment(num_seqs: int, seqs_len: int, pair: tuple[int, int], seed: int) -> list[str]:
    """Random sequences where column pair[1] copies column pair[0] (Watson-Crick complement)."""
    assert 0 <= pair[0] < pair[1] < seqs_len, "planted pair out of range"
    rng = np.random.default_rng(seed)
    alphabet = RNA_RESIDUES + GAP
    states = rng.integers(0, len(RNA_RESIDUES), size=(num_seqs, seqs_len))
    complement = np.array([3, 2, 1, 0])  # A<->U, C<->G
    states[:, pair[1]] = complement[states[:, pair[0]]]
    return ["".join(alphabet[s] for s in row) for row in states]


def write_fasta(sequences: list[str], path: Path) -> None:
    with open(path, "w") as fh:
        for idx, seq in enumerate(sequences):
            fh.write(f">seq{idx}\n{seq}\n")


def run(num_seqs: int, seqs_len: int, seqid: float, lambda_h: float, lambda_J: float,
        max_iterations: int, threads: int, seed: int, verbose: bool) -> None:
    pair = (1, seqs_len - 2)
    sequences = make_alignment(num_seqs, seqs_len, pair, seed)
    tracker = OptimizationTracker(name="synthetic_plmdca_trace", run_id=f"seed{seed}")
    with tempfile.TemporaryDirectory() as tmp:
        msa_file = Path(tmp) / "synthetic.fasta"
        write_fasta(sequences, msa_file)
        config = RunConfig(
            biomolecule=Biomolecule.RNA,
            num_site_states=len(RNA_RESIDUES) + 1,
            msa_file=msa_file,
            seqs_len=seqs_len,
            seqid=seqid,
            lambda_h=lambda_h,
            lambda_J=lambda_J,
            max_iterations=max_iterations,
            num_threads=threads,
            verbose=verbose,
        )
        h_and_J = run_plmdca(config, progress_hooks=[tracker.on_progress])
    if h_and_J is None:
        print("Allocation failed; nothing to report")
        return
    tracker.on_terminated(h_and_J.status, h_and_J.fx)
    tracker.flush()

    ranked = sorted_pair_scores(h_and_J.couplings(), seqs_len, gap_state=len(RNA_RESIDUES))
    top_i, top_j, top_score = ranked[0]
    out = log_records("synthetic_plmdca", [{
        "seed": int(seed),
        "num_seqs": int(num_seqs),
        "seqs_len": int(seqs_len),
        "lambda_h": float(lambda_h),
        "lambda_J": float(lambda_J),
        "threads": int(threads),
        "status": int(h_and_J.status),
        "fx": float(h_and_J.fx),
        "planted_i": int(pair[0]),
        "planted_j": int(pair[1]),
        "top_i": int(top_i),
        "top_j": int(top_j),
        "top_score": float(top_score),
        "planted_recovered": bool((top_i, top_j) == pair),
    }])
    print(f"status={h_and_J.status.name} fx={h_and_J.fx:.4f} top pair=({top_i}, {top_j}) -> {out}")
    free_fields_and_couplings(h_and_J)


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--num_seqs", type=int, default=200)
    parser.add_argument("--seqs_len", type=int, default=10)
    parser.add_argument("--seqid", type=float, default=0.8)
    parser.add_argument("--lambda_h", type=float, default=0.01)
    parser.add_argument("--lambda_J", type=float, default=0.01)
    parser.add_argument("--max_iterations", type=int, default=200)
    parser.add_argument("--threads", type=int, default=1)
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()
    run(
        num_seqs=args.num_seqs,
        seqs_len=args.seqs_len,
        seqid=args.seqid,
        lambda_h=args.lambda_h,
        lambda_J=args.lambda_J,
        max_iterations=args.max_iterations,
        threads=args.threads,
        seed=args.seed,
        verbose=args.verbose,
    )


if __name__ == "__main__":
    main()
