"""
gain.py

Volume slider -> OBS input gain (dB).

OBS takes input volume in dB, with -100 dB meaning silence and refusing
anything below it. A plain linear slider feels wrong on that scale, so the
fraction is bent through 2^t - 1 (t in 0..4) and scaled by -6.75:

    100% ->    0.00 dB
     75% ->   -6.75 dB
     50% ->  -20.25 dB
     25% ->  -47.25 dB
      0% -> -101.25 dB -> clamped to -100 dB
"""

from __future__ import annotations

import math

GAIN_FLOOR_DB = -100.0
GAIN_STEP_DB = -6.75
GAIN_OCTAVES = 4.0


def clamp_fraction(value) -> float:
    """Clamp a volume fraction to [0, 1]; anything non-numeric (or NaN) is 0."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(v):
        return 0.0
    return min(1.0, max(0.0, v))


def gain(fraction: float) -> float:
    """Map a linear volume fraction to OBS input gain in dB (floor -100)."""
    db = (2.0 ** ((1.0 - fraction) * GAIN_OCTAVES) - 1.0) * GAIN_STEP_DB
    return max(GAIN_FLOOR_DB, db)


def fraction_to_db(value) -> float:
    """Clamp then convert; the dB the volume reconciler sends and expects back."""
    return gain(clamp_fraction(value))
