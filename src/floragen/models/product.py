"""Product attributes consumed by the prompt builder.

The product catalog itself lives elsewhere; these models carry only what
generation needs and are populated from the request payload.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Fust code for plants delivered loose on the trolley shelf ("Aanvoer zonder fust")
FUST_CODE_NO_TRAY = 800


class Carrier(BaseModel):
    """Packaging and logistics metadata for a product."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    fust_code: int = Field(default=0, description="Packaging code (800 = no tray)")
    fust_type: str = Field(default="Tray", description="Packaging type, e.g. Tray or Doos")
    carriage_type: str = Field(default="DC", description="Carriage type (DC = Danish trolley)")
    layers: int = Field(default=1, ge=1, description="Number of trolley shelves")
    per_layer: int = Field(default=1, ge=1, description="Plants per shelf")
    units: int = Field(default=1, ge=1)


class Product(BaseModel):
    """A plant product as seen by the generation pipeline."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, description='e.g. "ARTIFICIAL Ficus Benjamina - 180cm"')
    sku: str = ""
    category: str = Field(default="", description="Tropical indoor, Artificial Plants, ...")
    carrier: Carrier = Field(default_factory=Carrier)
    pot_diameter: int = Field(..., ge=0, description="Pot diameter in cm")
    plant_height: int = Field(..., ge=0, description="Plant height in cm")
    is_artificial: bool = False
    can_bloom: bool = False


class Accessory(BaseModel):
    """A non-plant product (pot, vase, stand) combined with a plant."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str = Field(..., min_length=1)
    accessory_type: str | None = None
    material: str | None = None
    color: str | None = None
