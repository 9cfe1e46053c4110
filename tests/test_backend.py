from __future__ import annotations

import io
import logging

import numpy as np
import pytest

import plmdca.config as config_mod
import plmdca.objective as objective_mod
from plmdca import (
    Biomolecule,
    ConfigurationError,
    FieldsAndCouplings,
    LbfgsStatus,
    RunConfig,
    free_fields_and_couplings,
    plmdca_backend,
    run_plmdca,
)
from plmdca.errors import AllocationError
from plmdca_logging.logging_config import VerboseLogging, setup_logging


def _write_fasta(path, sequences):
    path.write_text("".join(f">s{i}\n{seq}\n" for i, seq in enumerate(sequences)))
    return path


@pytest.fixture
def tiny_msa(tmp_path):
    # two RNA sequences over {A, C}; with Q = 2 the remaining letters never occur
    return _write_fasta(tmp_path / "tiny.fasta", ["ACA", "CAC"])


@pytest.fixture
def small_msa(tmp_path):
    rng = np.random.default_rng(7)
    letters = np.array(list("ACGU-"))
    states = rng.integers(0, 4, size=(30, 5))
    states[:, 3] = 3 - states[:, 1]
    return _write_fasta(tmp_path / "small.fasta", ["".join(letters[row]) for row in states])


def test_end_to_end_tiny_rna(tiny_msa):
    fxs = []
    config = RunConfig(
        biomolecule=Biomolecule.RNA,
        num_site_states=2,
        msa_file=tiny_msa,
        seqs_len=3,
        seqid=0.8,
        lambda_h=0.01,
        lambda_J=0.01,
        max_iterations=10,
    )
    h_and_J = run_plmdca(config, progress_hooks=[lambda rec: fxs.append(rec.fx)])
    assert isinstance(h_and_J, FieldsAndCouplings)
    assert len(h_and_J) == 18
    assert isinstance(h_and_J.status, LbfgsStatus)
    assert np.isfinite(h_and_J.fx)
    assert np.all(np.isfinite(h_and_J.values))
    assert all(b <= a + 1e-9 for a, b in zip(fxs, fxs[1:]))
    h, J = h_and_J.split()
    assert h.shape == (3, 2) and J.shape == (3, 2, 2)
    free_fields_and_couplings(h_and_J)


def test_backend_entry_point_accepts_raw_values(small_msa):
    h_and_J = plmdca_backend(2, 5, str(small_msa), 5, 0.8, 1.0, 20.0, 20)
    assert len(h_and_J) == 5 * 5 + 10 * 25
    assert h_and_J.status.is_success or h_and_J.status in (
        LbfgsStatus.MAXIMUM_ITERATION,
        LbfgsStatus.LINESEARCH_FAILURE,
    )
    free_fields_and_couplings(h_and_J)


def test_zero_iterations_return_initial_guess(tiny_msa):
    h_and_J = plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 3, 0.8, 0.01, 0.01, 0)
    assert h_and_J.status is LbfgsStatus.MAXIMUM_ITERATION
    np.testing.assert_array_equal(h_and_J.values, np.zeros(18))


def test_single_sequence_alignment_is_finite(tmp_path):
    msa = _write_fasta(tmp_path / "one.fasta", ["ACGU"])
    h_and_J = plmdca_backend(Biomolecule.RNA, 5, msa, 4, 0.8, 0.01, 0.01, 15)
    assert np.isfinite(h_and_J.fx)
    assert np.all(np.isfinite(h_and_J.values))


def test_thread_count_does_not_change_result(small_msa):
    runs = [plmdca_backend(Biomolecule.RNA, 5, small_msa, 5, 0.8, 0.5, 1.0, 15, num_threads=t) for t in (1, 4)]
    assert runs[0].status == runs[1].status
    assert runs[0].fx == runs[1].fx
    np.testing.assert_array_equal(runs[0].values, runs[1].values)


def test_threads_without_parallel_support_fail_before_allocation(monkeypatch, tiny_msa):
    allocations = []
    monkeypatch.setattr(config_mod, "parallel_support_available", lambda: False)
    monkeypatch.setattr(objective_mod, "_allocate", lambda n: allocations.append(n))
    with pytest.raises(ConfigurationError):
        plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 3, 0.8, 0.01, 0.01, 10, num_threads=3)
    assert allocations == []


def test_single_thread_runs_without_parallel_support(monkeypatch, tiny_msa):
    monkeypatch.setattr(config_mod, "parallel_support_available", lambda: False)
    h_and_J = plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 3, 0.8, 0.01, 0.01, 5, num_threads=1)
    assert len(h_and_J) == 18


def test_allocation_failure_returns_none(monkeypatch, tiny_msa):
    def _fail(n):
        raise AllocationError("no memory")

    monkeypatch.setattr(objective_mod, "_allocate", _fail)
    assert plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 3, 0.8, 0.01, 0.01, 10) is None


def test_alignment_length_mismatch_is_rejected(tiny_msa):
    with pytest.raises(ValueError, match="does not match"):
        plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 4, 0.8, 0.01, 0.01, 10)


def test_release_is_single_shot(tiny_msa):
    h_and_J = plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 3, 0.8, 0.01, 0.01, 2)
    free_fields_and_couplings(h_and_J)
    assert h_and_J.released and h_and_J.values is None
    with pytest.raises(RuntimeError):
        h_and_J.split()
    with pytest.raises(RuntimeError):
        free_fields_and_couplings(h_and_J)


def test_free_none_is_a_noop():
    free_fields_and_couplings(None)


def test_verbose_run_writes_iteration_log(tiny_msa, capsys):
    config = RunConfig(
        biomolecule=Biomolecule.RNA,
        num_site_states=2,
        msa_file=tiny_msa,
        seqs_len=3,
        lambda_h=0.01,
        lambda_J=0.01,
        max_iterations=3,
        verbose=True,
    )
    h_and_J = run_plmdca(config)
    err = capsys.readouterr().err
    assert "Iteration 1:" in err
    assert f"L-BFGS optimization terminated with status code = {int(h_and_J.status)}" in err
    assert "fx = " in err


def test_quiet_run_writes_nothing(tiny_msa, capsys):
    plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 3, 0.8, 0.01, 0.01, 3)
    assert capsys.readouterr().err == ""


def test_setup_logging_replaces_handlers():
    stream = io.StringIO()
    setup_logging(verbose=True)
    logger = setup_logging(verbose=True, stream=stream, detailed=True)
    assert len(logger.handlers) == 1
    logging.getLogger("plmdca.objective").info("hello")
    assert "[INFO] plmdca.objective: hello" in stream.getvalue()


def test_verbose_run_restores_logger_state(tiny_msa, capsys):
    logger = logging.getLogger("plmdca")
    before = (list(logger.handlers), logger.level, logger.propagate)
    plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 3, 0.8, 0.01, 0.01, 3, verbose=True)
    assert (list(logger.handlers), logger.level, logger.propagate) == before
    capsys.readouterr()
    # a quiet run afterwards stays quiet
    plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 3, 0.8, 0.01, 0.01, 3)
    assert capsys.readouterr().err == ""


def test_verbose_run_still_reaches_host_handlers(tiny_msa, caplog):
    plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 3, 0.8, 0.01, 0.01, 3, verbose=True)
    with caplog.at_level(logging.INFO, logger="plmdca"):
        plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 3, 0.8, 0.01, 0.01, 3)
        logging.getLogger("plmdca.backend").info("after the run")
    assert "after the run" in caplog.text


def test_alignment_summary_is_debug_only(tiny_msa, caplog):
    with caplog.at_level(logging.INFO, logger="plmdca"):
        plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 3, 0.8, 0.01, 0.01, 3)
    assert "Loaded alignment" not in caplog.text
    caplog.clear()
    with caplog.at_level(logging.DEBUG, logger="plmdca"):
        plmdca_backend(Biomolecule.RNA, 2, tiny_msa, 3, 0.8, 0.01, 0.01, 3)
    assert "Loaded alignment" in caplog.text


def test_verbose_logging_scope_restores_on_error():
    logger = logging.getLogger("plmdca")
    stream = io.StringIO()
    with pytest.raises(RuntimeError):
        with VerboseLogging(stream=stream):
            logging.getLogger("plmdca.objective").info("inside")
            raise RuntimeError("boom")
    assert "inside" in stream.getvalue()
    assert logger.propagate and logger.level == logging.NOTSET and logger.handlers == []
