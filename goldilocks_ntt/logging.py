"""
Structured logging for NTT engine runs.

Produces:
  - manifest.json: One-time run metadata (git hash, config, node, backend)
  - transforms.jsonl: One record per transform call (sizes, timing)
  - errors.jsonl: One record per failed call
"""

import hashlib
import json
import os
import platform
import subprocess
import sys
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

from .backend import check_device_availability


@dataclass
class EngineManifest:
    """Run-level metadata, saved once per engine."""
    run_id: str
    timestamp: str
    git_commit: str
    config_hash: str
    node_name: str
    backend: str
    gpu_backend: str
    cupy_version: Optional[str]
    numpy_version: str
    python_version: str
    config: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def save(self, path: Path):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, default=str)


def _get_git_commit() -> str:
    """Get current git commit hash, or 'unknown'."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True, text=True, timeout=5,
        )
        return result.stdout.strip() if result.returncode == 0 else "unknown"
    except (OSError, subprocess.SubprocessError):
        return "unknown"


def _config_hash(config: Dict[str, Any]) -> str:
    """Deterministic hash of config dict."""
    s = json.dumps(config, sort_keys=True, default=str)
    return hashlib.sha256(s.encode()).hexdigest()[:16]


def create_manifest(run_id: str, config: Dict[str, Any],
                    backend: str) -> EngineManifest:
    """Create an EngineManifest with auto-detected metadata."""
    devices = check_device_availability()
    return EngineManifest(
        run_id=run_id,
        timestamp=time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        git_commit=_get_git_commit(),
        config_hash=_config_hash(config),
        node_name=os.environ.get("SLURMD_NODENAME", platform.node()),
        backend=backend,
        gpu_backend=devices["gpu_backend"],
        cupy_version=devices["cupy_version"],
        numpy_version=np.__version__,
        python_version=sys.version,
        config=config,
    )


class TransformLogger:
    """Structured JSONL logger for one engine.

    Writes two files:
      - transforms.jsonl  (every completed transform)
      - errors.jsonl      (every failed call)
    """

    def __init__(self, output_dir: Path, run_id: str = "ntt"):
        self.output_dir = Path(output_dir)
        self.run_id = run_id

        self.output_dir.mkdir(parents=True, exist_ok=True)

        self._transforms_path = self.output_dir / "transforms.jsonl"
        self._errors_path = self.output_dir / "errors.jsonl"

        # Append mode so repeated runs accumulate
        self._transforms_f = open(self._transforms_path, 'a')
        self._errors_f = open(self._errors_path, 'a')

        self._transforms_count = 0
        self._errors_count = 0
        self._closed = False

    def log_transform(self, record: Dict[str, Any]):
        """Log one completed transform call."""
        record["run_id"] = self.run_id
        record["timestamp"] = time.time()
        self._transforms_f.write(json.dumps(record, default=str) + "\n")
        self._transforms_count += 1

        # Flush periodically
        if self._transforms_count % 100 == 0:
            self._transforms_f.flush()

    def log_error(self, record: Dict[str, Any]):
        """Log a failed call."""
        record["run_id"] = self.run_id
        record["timestamp"] = time.time()
        self._errors_f.write(json.dumps(record, default=str) + "\n")
        self._errors_f.flush()
        self._errors_count += 1

    def close(self):
        """Flush and close all log files."""
        if self._closed:
            return
        for f in [self._transforms_f, self._errors_f]:
            f.flush()
            f.close()
        self._closed = True

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "transforms_logged": self._transforms_count,
            "errors_logged": self._errors_count,
        }

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
