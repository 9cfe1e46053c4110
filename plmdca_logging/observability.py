from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from plmdca.lbfgs import LbfgsStatus
from plmdca.objective import ObjectiveFunction, ProgressRecord
from plmdca_logging.metrics_log import log_records


@dataclass
class OptimizationTracker:
    """Attach to ObjectiveFunction hooks and log the L-BFGS trace to a Polars CSV.

    Usage:
        tracker = OptimizationTracker(name="plmdca_trace", run_id="demo")
        tracker.attach(fun)
        fun.run(n)
        tracker.flush()
    """
    name: str
    run_id: str
    buffer: List[Dict[str, Any]] = field(default_factory=list)
    prev_fx: Optional[float] = None
    increases: int = 0
    final_status: Optional[LbfgsStatus] = None

    def attach(self, fun: ObjectiveFunction) -> None:
        fun.on_progress.append(self.on_progress)
        fun.on_terminated.append(self.on_terminated)

    def on_progress(self, record: ProgressRecord) -> None:
        delta = None if self.prev_fx is None else float(record.fx - self.prev_fx)
        if delta is not None and delta > 0.0:
            self.increases += 1
        self.prev_fx = float(record.fx)
        self.buffer.append({
            "run_id": self.run_id,
            "iteration": int(record.iteration),
            "fx": float(record.fx),
            "delta_fx": float("nan") if delta is None else delta,
            "xnorm": float(record.xnorm),
            "gnorm": float(record.gnorm),
            "step": float(record.step),
            "linesearch": int(record.linesearch),
            "status": None,
        })

    def on_terminated(self, status: LbfgsStatus, fx: float) -> None:
        self.final_status = status
        self.buffer.append({
            "run_id": self.run_id,
            "iteration": -1,
            "fx": float(fx),
            "delta_fx": float("nan"),
            "xnorm": float("nan"),
            "gnorm": float("nan"),
            "step": float("nan"),
            "linesearch": 0,
            "status": int(status),
        })

    def flush(self) -> None:
        if self.buffer:
            log_records(self.name, self.buffer)
            self.buffer.clear()
