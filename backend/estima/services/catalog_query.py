"""Read-only filtering over a catalog snapshot."""
from typing import Iterable, List, Optional

from estima.models.schemas import Material


def filter_materials(
    materials: Iterable[Material],
    category: Optional[str] = None,
    source: Optional[str] = None,
    text: Optional[str] = None,
) -> List[Material]:
    """
    AND-compose the given filters, keeping input order.

    category: exact category id
    source:   must appear in ``material.sources``
    text:     case-insensitive substring of name or unit
    Empty or blank filters match everything.
    """
    needle = (text or "").strip().lower()
    result = []
    for material in materials:
        if category and material.category != category:
            continue
        if source and source not in material.sources:
            continue
        if needle and needle not in material.name.lower() and needle not in material.unit.lower():
            continue
        result.append(material)
    return result


def list_sources(materials: Iterable[Material]) -> List[str]:
    """Distinct price sources in first-seen order (feeds the source picker)."""
    seen = []
    for material in materials:
        for source in material.sources:
            if source not in seen:
                seen.append(source)
    return seen
