"""Configuration values for the rotation pipelines.

:class:`RotatorConfig` holds the launch geometry and numerical tolerances a
:class:`~paeth.pipeline.Rotator2` / :class:`~paeth.pipeline.Rotator3` uses.
Values are validated on construction, so a bad config fails where it is
built rather than at the first dispatch.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace

import numpy as np

from paeth.shared.rotation import pivot_tolerance
from paeth.types import FloatDType


def _as_size(value, ndim: int, name: str) -> tuple[int, ...]:
    size = tuple(int(v) for v in value)
    if len(size) != ndim:
        raise ValueError(f"{name} must have {ndim} entries, got {size}")
    if any(v < 1 for v in size):
        raise ValueError(f"{name} entries must be positive, got {size}")
    return size


@dataclass(frozen=True)
class RotatorConfig:
    """Launch and tolerance settings of a rotator.

    Attributes:
        local_size: Work-group size of the 2D passes (sheared axis first)
        local_size_3d: Work-group size of the 3D passes
        pivot_tolerance: Absolute pivot tolerance of the decomposition;
            ``None`` uses ``10 * eps`` of the rotator's element type
        check_rotation: Validate input matrices as rotations before decomposing
        max_work_group_size: Largest work-group the pipelines will request

    Example:
        >>> cfg = RotatorConfig(local_size=(64, 4))
        >>> cfg.with_values(pivot_tolerance=1e-6).pivot_tolerance
        1e-06
    """

    local_size: tuple[int, int] = (32, 8)
    local_size_3d: tuple[int, int, int] = (32, 8, 1)
    pivot_tolerance: float | None = None
    check_rotation: bool = True
    max_work_group_size: int = 1024

    def __post_init__(self):
        # Frozen, so normalize through object.__setattr__
        object.__setattr__(self, "local_size", _as_size(self.local_size, 2, "local_size"))
        object.__setattr__(
            self, "local_size_3d", _as_size(self.local_size_3d, 3, "local_size_3d")
        )
        if self.pivot_tolerance is not None:
            tol = float(self.pivot_tolerance)
            if not np.isfinite(tol) or tol < 0:
                raise ValueError(f"pivot_tolerance must be finite and >= 0, got {tol}")
            object.__setattr__(self, "pivot_tolerance", tol)
        if self.max_work_group_size < 1:
            raise ValueError(
                f"max_work_group_size must be positive, got {self.max_work_group_size}"
            )
        for name in ("local_size", "local_size_3d"):
            size = getattr(self, name)
            if int(np.prod(size)) > self.max_work_group_size:
                raise ValueError(
                    f"{name} {size} exceeds max_work_group_size={self.max_work_group_size}"
                )

    def tolerance_for(self, dtype: FloatDType) -> float:
        """Pivot tolerance to use for buffers of ``dtype``."""
        if self.pivot_tolerance is not None:
            return self.pivot_tolerance
        return pivot_tolerance(dtype)

    def with_values(self, **changes) -> RotatorConfig:
        """Copy with some fields replaced (re-validated)."""
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, d: dict) -> RotatorConfig:
        """Build a config from a plain dict.

        :param d: Mapping of field names to values
        :returns: RotatorConfig instance
        :raises ValueError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(d) - known)
        if unknown:
            raise ValueError(f"Unknown RotatorConfig keys: {unknown}")
        return cls(**d)

    def to_dict(self) -> dict:
        """Plain-dict form (tuples become lists) suitable for JSON."""
        d = asdict(self)
        d["local_size"] = list(self.local_size)
        d["local_size_3d"] = list(self.local_size_3d)
        return d


DEFAULT_CONFIG = RotatorConfig()
