"""Product configuration (catalog) data models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from app.utils.helpers import utcnow


class CatalogType(str, Enum):
    """Kinds of selectable options offered by the configurator."""

    DEVICES = "devices"
    COLORS = "colors"
    FONTS = "fonts"
    CARRIERS = "carriers"
    CASE_TYPES = "caseTypes"


class CatalogEntry(BaseModel):
    """A single selectable option."""

    name: str = Field(..., min_length=1)
    value: Optional[str] = None
    hex: Optional[str] = Field(None, description="Swatch color, for colors")
    family: Optional[str] = Field(None, description="CSS font family, for fonts")
    code: Optional[str] = Field(None, description="Carrier code, for carriers")
    price: Optional[Decimal] = Field(None, ge=0, description="Unit price, for case types")
    active: bool = True


class ProductConfig(BaseModel):
    """Catalog document as stored in database."""

    type: CatalogType
    data: list[CatalogEntry] = Field(default_factory=list)
    updatedAt: datetime = Field(default_factory=utcnow)

    def active_entries(self) -> list[CatalogEntry]:
        return [entry for entry in self.data if entry.active]


def _names(*names: str) -> list[CatalogEntry]:
    return [CatalogEntry(name=name) for name in names]


DEFAULT_CATALOG: list[ProductConfig] = [
    ProductConfig(
        type=CatalogType.DEVICES,
        data=_names(
            "iPhone 15 Pro Max",
            "iPhone 15 Pro",
            "iPhone 15",
            "iPhone 14 Pro Max",
            "iPhone 14 Pro",
            "iPhone 14",
            "iPhone 13 Pro Max",
            "iPhone 13 Pro",
            "iPhone 13",
            "Samsung Galaxy S24",
            "Samsung Galaxy S23",
            "Samsung Galaxy S22",
        ),
    ),
    ProductConfig(
        type=CatalogType.COLORS,
        data=[
            CatalogEntry(name="Hot Pink", hex="#E91E63"),
            CatalogEntry(name="Pink", hex="#F48FB1"),
            CatalogEntry(name="Orange", hex="#FF9800"),
            CatalogEntry(name="Light Orange", hex="#FFB74D"),
            CatalogEntry(name="Yellow", hex="#FFEB3B"),
            CatalogEntry(name="Teal", hex="#26C6DA"),
            CatalogEntry(name="Blue", hex="#2196F3"),
            CatalogEntry(name="Purple", hex="#9C27B0"),
            CatalogEntry(name="Dark Purple", hex="#673AB7"),
            CatalogEntry(name="Black", hex="#000000"),
            CatalogEntry(name="White", hex="#FFFFFF"),
            CatalogEntry(name="Red", hex="#F44336"),
        ],
    ),
    ProductConfig(
        type=CatalogType.FONTS,
        data=[
            CatalogEntry(name="Pecita", family="Pecita, sans-serif"),
            CatalogEntry(name="Inter", family="Inter, sans-serif"),
            CatalogEntry(name="Poppins", family="Poppins, sans-serif"),
            CatalogEntry(name="Roboto", family="Roboto, sans-serif"),
            CatalogEntry(name="Montserrat", family="Montserrat, sans-serif"),
        ],
    ),
    ProductConfig(
        type=CatalogType.CARRIERS,
        data=[
            CatalogEntry(name="USPS", code="usps"),
            CatalogEntry(name="UPS", code="ups"),
            CatalogEntry(name="FedEx", code="fedex"),
            CatalogEntry(name="DHL", code="dhl", active=False),
        ],
    ),
    ProductConfig(
        type=CatalogType.CASE_TYPES,
        data=[
            CatalogEntry(name="CLASSIC", value="Classic Case", price=Decimal("5.95")),
            CatalogEntry(name="PREMIUM", value="Premium Case", price=Decimal("8.95")),
        ],
    ),
]
