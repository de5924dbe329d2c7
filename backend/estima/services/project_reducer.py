"""
Pure line-item transitions used by the project state machine.

Each function returns a new list and leaves its input untouched.  Together
they keep two invariants: at most one line item per material id, and no line
item with a quantity below 1.
"""
import time
from typing import List, Optional

from estima.models.schemas import DEFAULT_PROJECT_NAME, LineItem, Material


def now_ms() -> int:
    return int(time.time() * 1000)


def make_line_item_id(material_id: str, created_ms: int) -> str:
    return f"{material_id}-{created_ms}"


def add_item(items: List[LineItem], material: Material, quantity: int, created_ms: Optional[int] = None) -> List[LineItem]:
    """Merge into the existing line for ``material.id`` or append a new one."""
    quantity = int(quantity)
    if quantity <= 0:
        return list(items)

    for index, item in enumerate(items):
        if item.material.id == material.id:
            merged = item.model_copy(update={"quantity": item.quantity + quantity})
            return items[:index] + [merged] + items[index + 1:]

    created_ms = now_ms() if created_ms is None else created_ms
    new_item = LineItem(
        id=make_line_item_id(material.id, created_ms),
        material=material.model_copy(deep=True),
        quantity=quantity,
    )
    return list(items) + [new_item]


def remove_item(items: List[LineItem], line_item_id: str) -> List[LineItem]:
    return [item for item in items if item.id != line_item_id]


def update_quantity(items: List[LineItem], line_item_id: str, quantity: int) -> List[LineItem]:
    """Set the quantity, clamping negatives to 0; a zero quantity drops the line."""
    quantity = max(0, int(quantity))
    if quantity == 0:
        return remove_item(items, line_item_id)
    return [
        item.model_copy(update={"quantity": quantity}) if item.id == line_item_id else item
        for item in items
    ]


def normalize_name(name: Optional[str]) -> str:
    """Blank names collapse to the default rather than failing."""
    cleaned = (name or "").strip()
    return cleaned or DEFAULT_PROJECT_NAME
