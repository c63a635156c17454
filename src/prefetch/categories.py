"""Prefetch categories and their default relative priorities.

Category weights are independently reconfigurable. Lower weights are loaded
first. Every task priority is ``weight + offset`` where the offset comes from
the target index (``i * 0.1``) and the background layer priority
(``p * 0.001``). Offsets stay below 1, so any two categories must keep at least
``MIN_CATEGORY_SPACING`` between their weights or tasks of one category may be
dispatched in the middle of another.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prefetch.types import CategoryStats
from shared.constants import MIN_CATEGORY_SPACING, PrefetchCategory

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

NEXT_NAV_CATEGORIES = frozenset(
    {PrefetchCategory.NEXT_NAV_ACTIVE, PrefetchCategory.NEXT_NAV_BACKGROUND},
)

DEFAULT_CATEGORY_PRIORITIES: dict[PrefetchCategory, float] = {
    PrefetchCategory.SPATIAL_ACTIVE: 1,
    PrefetchCategory.BACKGROUND_LAYERS_VIEWPORT: 2,
    PrefetchCategory.BACKGROUND_LAYERS_BUFFER: 3,
    PrefetchCategory.NEXT_NAV_ACTIVE: 4,
    PrefetchCategory.NEXT_NAV_BACKGROUND: 5,
}

CATEGORY_NAMES: dict[PrefetchCategory, str] = {
    PrefetchCategory.SPATIAL_ACTIVE: 'Spatial (active)',
    PrefetchCategory.BACKGROUND_LAYERS_VIEWPORT: 'BG viewport',
    PrefetchCategory.BACKGROUND_LAYERS_BUFFER: 'BG buffer',
    PrefetchCategory.NEXT_NAV_ACTIVE: 'Next nav (active)',
    PrefetchCategory.NEXT_NAV_BACKGROUND: 'Next nav (BG)',
}


def get_category_name(category: PrefetchCategory | str) -> str:
    """Human-readable label for a category, e.g. for error records."""
    key = PrefetchCategory.parse(category)
    if key is None:
        return f'Category {category}'
    return CATEGORY_NAMES[key]


def create_initial_category_counts() -> dict[PrefetchCategory, CategoryStats]:
    return {category: CategoryStats() for category in PrefetchCategory}


def check_priority_spacing(priorities: Mapping[PrefetchCategory, float]) -> bool:
    """
    Check that sub-priority offsets cannot reorder tasks across categories.

    Returns False (and logs a warning) when two categories are closer than
    MIN_CATEGORY_SPACING.
    """
    ordered = sorted(priorities.items(), key=lambda item: item[1])
    ok = True
    for (lower, lower_w), (upper, upper_w) in zip(ordered, ordered[1:]):
        if upper_w - lower_w < MIN_CATEGORY_SPACING:
            logger.warning(
                'Category weights %s=%s and %s=%s are closer than %s; '
                'sub-priority offsets may interleave their tasks',
                lower.value,
                lower_w,
                upper.value,
                upper_w,
                MIN_CATEGORY_SPACING,
            )
            ok = False
    return ok
