"""Named rotator configurations with dict/JSON loading."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from paeth.config.values import DEFAULT_CONFIG, RotatorConfig

logger = logging.getLogger(__name__)

# ============================================================================
# Presets
# ============================================================================

DEFAULT = DEFAULT_CONFIG

# Wide rows: one work-group spans 128 pixels of the sheared axis
WIDE_ROWS = RotatorConfig(local_size=(128, 2), local_size_3d=(128, 2, 1))

# Square tiles, friendlier to devices with small work-groups
SQUARE_TILES = RotatorConfig(local_size=(16, 16), local_size_3d=(8, 8, 4))

# Loose pivot tolerance for float32 rotations close to +-90 degrees
LOOSE_PIVOT = RotatorConfig(pivot_tolerance=1e-5)

# Trusted input: skip the orthonormality check
UNCHECKED = RotatorConfig(check_rotation=False)

ROTATOR_PRESETS = {
    "default": DEFAULT,
    "wide_rows": WIDE_ROWS,
    "square_tiles": SQUARE_TILES,
    "loose_pivot": LOOSE_PIVOT,
    "unchecked": UNCHECKED,
}


def get_rotator_preset(name: str) -> RotatorConfig:
    """Get a rotator preset by name.

    :param name: Preset name (case-insensitive)
    :returns: RotatorConfig instance
    :raises KeyError: If preset not found
    """
    key = name.lower()
    if key not in ROTATOR_PRESETS:
        available = ", ".join(sorted(ROTATOR_PRESETS))
        raise KeyError(f"Unknown rotator preset '{name}'. Available: {available}")
    return ROTATOR_PRESETS[key]


# ============================================================================
# JSON
# ============================================================================


def load_rotator_json(path: str | Path) -> RotatorConfig:
    """Load a RotatorConfig from a JSON file.

    :param path: Path to JSON file
    :returns: RotatorConfig instance
    """
    with open(path) as f:
        d = json.load(f)
    logger.debug("[RotatorConfig] Loaded %s from %s", d, path)
    return RotatorConfig.from_dict(d)


def save_rotator_json(config: RotatorConfig, path: str | Path) -> None:
    """Save a RotatorConfig to a JSON file.

    :param config: Config to save
    :param path: Output path
    """
    with open(path, "w") as f:
        json.dump(config.to_dict(), f, indent=2)
