"""
Property colour assignment and slot styling.

Colours are handed out by position in the agent's property list and wrap
around once the palette is exhausted, so the ninth property shares the
first property's colour.
"""

from dataclasses import replace
from typing import List, Sequence

from .models import Property, SlotStyle

PALETTE = (
    "blue",
    "green",
    "purple",
    "dark_orange",
    "magenta",
    "cyan",
    "red",
    "yellow",
)

VISIT_Z_INDEX = 10
AVAILABLE_Z_INDEX = 0


def color_for_index(index: int, palette: Sequence[str] = PALETTE) -> str:
    """Return the palette colour for the property at ``index``."""
    if index < 0:
        raise ValueError(f"Property index must not be negative, got {index}")
    return palette[index % len(palette)]


def assign_colors(
    properties: Sequence[Property],
    palette: Sequence[str] = PALETTE,
) -> List[Property]:
    """Return copies of ``properties`` with their display colour filled in."""
    return [
        replace(prop, color=color_for_index(index, palette))
        for index, prop in enumerate(properties)
    ]


def slot_style(color: str, is_visit: bool = False) -> SlotStyle:
    """
    Build the visual treatment for a slot of the given property colour.

    Visits are drawn solid and stacked above availability windows, which
    are drawn as faint dashed outlines.
    """
    if is_visit:
        return SlotStyle(
            color=color,
            fill="solid",
            border="solid",
            opacity=0.9,
            z_index=VISIT_Z_INDEX,
        )
    return SlotStyle(
        color=color,
        fill="tint",
        border="dashed",
        opacity=0.3,
        z_index=AVAILABLE_Z_INDEX,
    )
