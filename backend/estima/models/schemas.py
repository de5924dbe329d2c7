"""
Domain models shared by the stores, the state machine and the pure engines.

Attribute names are snake_case; JSON uses camelCase aliases (``lineItems``,
``priceMode``, ``lastUpdated``, ...) so that persisted local records and the
remote ``data`` payload keep the shape the web client reads.
"""
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_PROJECT_NAME = "New Project"


class PriceMode(str, Enum):
    LOW = "low"
    TYPICAL = "typical"
    HIGH = "high"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Prices(_CamelModel):
    """Low / typical / high unit price; low <= typical <= high is assumed, not enforced."""
    low: float = Field(..., ge=0)
    typical: float = Field(..., ge=0)
    high: float = Field(..., ge=0)

    def for_mode(self, mode: PriceMode) -> float:
        return getattr(self, PriceMode(mode).value)


class Material(_CamelModel):
    id: str
    name: str
    category: str
    unit: str
    prices: Prices
    sources: List[str] = Field(default_factory=list)
    last_updated: Optional[date] = None
    notes: Optional[str] = None


class Category(_CamelModel):
    id: str
    name: str
    icon: Optional[str] = None


class LineItem(_CamelModel):
    id: str
    material: Material              # snapshot taken when the item was added
    quantity: int = Field(..., ge=0)


class Project(_CamelModel):
    id: Optional[str] = None        # None until a store has persisted it
    name: str = DEFAULT_PROJECT_NAME
    line_items: List[LineItem] = Field(default_factory=list)
    price_mode: PriceMode = PriceMode.TYPICAL
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Totals(BaseModel):
    low: float = 0.0
    typical: float = 0.0
    high: float = 0.0
    item_count: int = 0             # number of line items
    material_count: int = 0         # sum of quantities

    def for_mode(self, mode: PriceMode) -> float:
        return getattr(self, PriceMode(mode).value)


class CatalogSeed(_CamelModel):
    """Bundled reference data: the authoritative categories and the initial materials."""
    materials: List[Material] = Field(default_factory=list)
    categories: List[Category] = Field(default_factory=list)
