"""H3 cells describing a ride's search area and a driver's live position.

The external matcher compares a driver's ``current_cell`` against a ride's
``nearby_cells``; both are H3 indices at ``settings.h3_resolution``.
"""
import h3

from ridedispatch.config import settings
from ridedispatch.dispatch.validation import validate_coordinates


def cell_for(lat: float, lng: float) -> str:
    validate_coordinates(lat, lng)
    return h3.latlng_to_cell(lat, lng, settings.h3_resolution)


def grid_disk(cell: str, k: int) -> list[str]:
    """All cells within ``k`` rings of ``cell``."""
    return list(h3.grid_disk(cell, k))


def search_area(lat: float, lng: float, scheduled: bool = False) -> list[str]:
    """Cells the matcher may search around a pickup; wider for scheduled rides."""
    rings = settings.scheduled_search_rings if scheduled else settings.search_rings
    return grid_disk(cell_for(lat, lng), rings)
