"""Configuration for paeth rotators.

Usage:
    from paeth.config import RotatorConfig, get_rotator_preset
    cfg = RotatorConfig(local_size=(64, 4))
    cfg = get_rotator_preset("square_tiles")
"""

from paeth.config.presets import (
    DEFAULT,
    LOOSE_PIVOT,
    ROTATOR_PRESETS,
    SQUARE_TILES,
    UNCHECKED,
    WIDE_ROWS,
    get_rotator_preset,
    load_rotator_json,
    save_rotator_json,
)
from paeth.config.values import DEFAULT_CONFIG, RotatorConfig

__all__ = [
    "RotatorConfig",
    "DEFAULT_CONFIG",
    # Presets
    "DEFAULT",
    "WIDE_ROWS",
    "SQUARE_TILES",
    "LOOSE_PIVOT",
    "UNCHECKED",
    "ROTATOR_PRESETS",
    "get_rotator_preset",
    # JSON
    "load_rotator_json",
    "save_rotator_json",
]
