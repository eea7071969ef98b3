"""Adaptive policy: static mapping from network quality to operating parameters."""
from __future__ import annotations

from .const import POLICY_TABLE
from .models import OperatingConfig, QualityClass

_CONFIGS: dict[QualityClass, OperatingConfig] = {
    QualityClass(quality): OperatingConfig(
        poll_interval_ms=interval,
        compress=compress,
        reduced_payload=reduced,
        batch=batch,
        max_retries=retries,
    )
    for quality, (interval, compress, reduced, batch, retries) in POLICY_TABLE.items()
}


def resolve(quality: QualityClass) -> OperatingConfig:
    """Return the OperatingConfig for the given quality class."""
    return _CONFIGS[QualityClass(quality)]
