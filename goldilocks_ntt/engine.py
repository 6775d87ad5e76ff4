"""
NttEngine: one object owning device state, staging buffers and the run log.

Usage:
    with NttEngine(EngineConfig(max_log_n=20)) as engine:
        with engine.vector(n) as buf:
            buf.fill_from(coeffs)
            evals = engine.evaluate_poly_with_offset(buf, n, h, 4)
"""

import time
from pathlib import Path
from typing import Any, Dict, Optional

from . import coset
from .config import EngineConfig
from .device import DeviceContext, ParamGroup
from .errors import NttError
from .field.reference import COSET_SHIFT
from .logging import TransformLogger, create_manifest
from .staging import PinnedVector, StagingAllocator


class NttEngine:
    """Forward/inverse/coset transforms over one DeviceContext."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.context = DeviceContext(self.config.backend)
        pinned = self.config.pinned
        if pinned is None:
            pinned = self.context.backend == "cupy"
        self.allocator = StagingAllocator(pinned=pinned)
        self.group: ParamGroup = self.context.init(self.config.max_n)

        self.logger: Optional[TransformLogger] = None
        if self.config.log_dir:
            log_dir = Path(self.config.log_dir)
            manifest = create_manifest(
                self.config.run_id, self.config.to_dict(), self.context.backend,
            )
            manifest.save(log_dir / "manifest.json")
            self.logger = TransformLogger(log_dir, run_id=self.config.run_id)

    def __repr__(self) -> str:
        return (f"NttEngine(backend={self.backend!r}, max_n={self.group.max_n}, "
                f"live_buffers={self.allocator.live_count})")

    @property
    def backend(self) -> str:
        return self.context.backend

    # -- lifecycle -----------------------------------------------------------

    def close(self) -> None:
        """Free outstanding staging buffers, tear down the device, close logs."""
        self.allocator.free_all()
        self.context.teardown()
        if self.logger is not None:
            self.logger.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # -- staging -------------------------------------------------------------

    def alloc(self, n: int, batch: Optional[int] = None) -> PinnedVector:
        return self.allocator.Vec_init(n, batch)

    def free(self, vec: PinnedVector) -> None:
        self.allocator.Vec_free(vec)

    def vector(self, n: int, batch: Optional[int] = None):
        return self.allocator.vector(n, batch)

    # -- transforms ----------------------------------------------------------

    def _call(self, op: str, record: Dict[str, Any], fn, *args):
        t_start = time.time()
        try:
            out = fn(*args)
        except NttError as exc:
            if self.logger is not None:
                record.update(op=op, error=type(exc).__name__, message=str(exc))
                self.logger.log_error(record)
            raise
        if self.logger is not None:
            record.update(
                op=op,
                backend=self.backend,
                out_len=int(out.shape[-1]),
                rows=1 if out.ndim == 1 else int(out.shape[0]),
                wall_time_sec=time.time() - t_start,
            )
            self.logger.log_transform(record)
        return out

    def evaluate_poly(self, vec, n: int, result=None):
        return self._call("evaluate_poly", {"n": n},
                          coset.evaluate_poly, vec, result, n, self.group)

    def evaluate_poly_with_offset(self, vec, n: int, domain_offset: int,
                                  blowup_factor: int = 1, result=None):
        return self._call(
            "evaluate_poly_with_offset",
            {"n": n, "blowup_factor": blowup_factor},
            coset.evaluate_poly_with_offset,
            vec, n, domain_offset, blowup_factor, result,
            n * blowup_factor, self.group,
        )

    def interpolate_poly(self, vec, n: int, result=None):
        return self._call("interpolate_poly", {"n": n},
                          coset.interpolate_poly, vec, result, n, self.group)

    def interpolate_poly_with_offset(self, vec, n: int, domain_offset: int,
                                     result=None):
        return self._call("interpolate_poly_with_offset", {"n": n},
                          coset.interpolate_poly_with_offset,
                          vec, result, n, domain_offset, self.group)

    def lde(self, vec, n: int, blowup_factor: int, result=None):
        return self._call("lde", {"n": n, "blowup_factor": blowup_factor},
                          coset.lde, vec, n, blowup_factor, self.group, result)

    def coset_lde(self, vec, n: int, blowup_factor: int,
                  shift: int = COSET_SHIFT, result=None):
        return self._call("coset_lde", {"n": n, "blowup_factor": blowup_factor},
                          coset.coset_lde, vec, n, blowup_factor, self.group,
                          shift, result)
