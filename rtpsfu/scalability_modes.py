"""Parsing of scalability mode strings such as 'L1T3' or 'L3T2_KEY'."""

from __future__ import annotations

import re
from dataclasses import dataclass

_SCALABILITY_MODE_RE = re.compile(r"^[LS]([1-9]\d?)T([1-9]\d?)(_KEY)?", re.ASCII)


@dataclass(frozen=True)
class ScalabilityMode:
    """Spatial and temporal layer counts of an RTP stream."""

    spatial_layers: int = 1
    temporal_layers: int = 1
    ksvc: bool = False


def parse_scalability_mode(scalability_mode: str) -> ScalabilityMode:
    """Parse a scalability mode; anything unrecognised means one layer of each."""
    match = _SCALABILITY_MODE_RE.match(scalability_mode or "")
    if match is None:
        return ScalabilityMode(spatial_layers=1, temporal_layers=1, ksvc=False)
    return ScalabilityMode(
        spatial_layers=int(match.group(1)),
        temporal_layers=int(match.group(2)),
        ksvc=match.group(3) is not None,
    )