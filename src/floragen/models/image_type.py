"""Image type enumeration and generation setting vocabularies."""

from enum import Enum
from typing import Literal


class ImageType(str, Enum):
    """Derivative image variants that can be generated from a source photo.

    Values use hyphens on the API surface; the database stores underscores.
    """

    WHITE_BACKGROUND = "white-background"
    MEASURING_TAPE = "measuring-tape"
    DETAIL = "detail"
    COMPOSITE = "composite"
    TRAY = "tray"
    LIFESTYLE = "lifestyle"
    SEASONAL = "seasonal"
    DANISH_CART = "danish-cart"

    @property
    def db_value(self) -> str:
        return to_db_image_type(self.value)


AspectRatio = Literal["1:1", "4:3", "3:4", "16:9", "9:16"]
Resolution = Literal["1024", "2048", "4096"]

ASPECT_RATIOS: tuple[str, ...] = ("1:1", "4:3", "3:4", "16:9", "9:16")
RESOLUTIONS: tuple[str, ...] = ("1024", "2048", "4096")

# Largest output tier; requests for it get the extended timeout
LARGEST_RESOLUTION = "4096"


def to_db_image_type(value: str) -> str:
    """Convert an API image type (``white-background``) to its stored form."""
    return value.replace("-", "_")


def from_db_image_type(value: str) -> str:
    """Convert a stored image type (``white_background``) to its API form."""
    return value.replace("_", "-")
