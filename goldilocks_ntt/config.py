"""
Engine configuration.

Configs are plain dataclasses; YAML files are loaded with yaml.safe_load,
e.g. configs/local.yaml:

    max_log_n: 20
    backend: auto
    log_dir: runs/ntt
"""

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import PreconditionError
from .field.reference import TWO_ADICITY


@dataclass
class EngineConfig:
    """Configuration for an NttEngine."""
    max_log_n: int = 16             # GPU_init size, 2^max_log_n
    backend: str = "auto"           # "auto", "numpy" or "cupy"
    pinned: Optional[bool] = None   # Pinned staging buffers (None: when on GPU)
    log_dir: Optional[str] = None   # JSONL transform log directory; None disables
    run_id: str = "ntt"

    def __post_init__(self):
        if isinstance(self.max_log_n, bool) or not isinstance(self.max_log_n, int):
            raise PreconditionError(
                f"max_log_n must be an int, got {self.max_log_n!r}"
            )
        if not 0 <= self.max_log_n <= TWO_ADICITY:
            raise PreconditionError(
                f"max_log_n must be in [0, {TWO_ADICITY}], got {self.max_log_n}"
            )

    @property
    def max_n(self) -> int:
        return 1 << self.max_log_n

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise PreconditionError(
                f"Unknown engine config keys: {sorted(unknown)}"
            )
        return cls(**data)

    @classmethod
    def from_yaml(cls, path) -> "EngineConfig":
        with open(Path(path)) as f:
            data = yaml.safe_load(f) or {}
        # Allow the engine block to live under an "ntt" key of a larger file
        if "ntt" in data and isinstance(data["ntt"], dict):
            data = data["ntt"]
        return cls.from_dict(data)
