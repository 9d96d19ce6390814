"""
Throat geometry for Pore Network Modeling.

A throat is a cylinder between two pore surfaces: its radius is a fraction of
the smaller pore radius, its length the centre distance minus both radii.
"""

import math
from typing import Tuple

import config
from core.network import Pore, Throat


def throat_radius(r1: float, r2: float, factor: float = config.THROAT_RADIUS_FACTOR) -> float:
    return factor * min(r1, r2)


def throat_length(distance: float, r1: float, r2: float) -> float:
    """Surface-to-surface gap, floored so overlapping pores keep a finite conduit."""
    return max(config.MIN_THROAT_LENGTH, distance - r1 - r2)


def throat_geometry(distance: float, r1: float, r2: float,
                    factor: float = config.THROAT_RADIUS_FACTOR) -> Tuple[float, float, float]:
    """
    Returns:
        (radius, length, volume) in um / um / um^3
    """
    radius = throat_radius(r1, r2, factor)
    length = throat_length(distance, r1, r2)
    volume = math.pi * radius * radius * length
    if not (math.isfinite(radius) and math.isfinite(length) and math.isfinite(volume)):
        raise ArithmeticError(
            f"Non-finite throat geometry (d={distance}, r1={r1}, r2={r2})"
        )
    return radius, length, volume


def create_throat(throat_id: int, pore_a: Pore, pore_b: Pore, distance: float,
                  radius_factor: float = config.THROAT_RADIUS_FACTOR,
                  synthetic: bool = False) -> Throat:
    """Build a throat between two pores; endpoint order is normalised to id1 < id2."""
    if pore_a.id == pore_b.id:
        raise ValueError(f"Cannot connect pore {pore_a.id} to itself")
    if pore_a.id > pore_b.id:
        pore_a, pore_b = pore_b, pore_a

    radius, length, volume = throat_geometry(distance, pore_a.radius, pore_b.radius, radius_factor)
    return Throat(
        id=throat_id,
        pore_id1=pore_a.id,
        pore_id2=pore_b.id,
        radius=radius,
        length=length,
        volume=volume,
        synthetic=synthetic,
    )
