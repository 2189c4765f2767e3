"""Prompt builder for product photo generation.

Maps an image type and product attributes to a natural-language instruction plus
generation settings. Pure functions: no state, no I/O, identical inputs always
produce identical output.

Each image type has one entry in PROMPT_CONFIG holding its template, sampling
temperature, default aspect ratio and whether it should be generated from the
white-background output instead of the original upload. The last flag lives
next to the template because those templates assume a pre-cleaned background.
"""

import re
from dataclasses import dataclass
from typing import Callable

from floragen.models.image_type import ImageType
from floragen.models.product import FUST_CODE_NO_TRAY, Accessory, Carrier, Product

STYLE_PREAMBLE = (
    "Professional horticultural product photography for Floriday (Dutch flower trade "
    "platform). High-resolution, photorealistic output. Consistent studio lighting "
    "(5500K daylight). Tack-sharp focus."
)

DEFAULT_TEMPERATURE = 0.4
DEFAULT_ASPECT_RATIO = "1:1"


@dataclass(frozen=True)
class PromptConfig:
    """Sampling settings for one image type."""

    temperature: float
    default_aspect_ratio: str


@dataclass(frozen=True)
class PromptSpec:
    """Template plus settings for one image type."""

    template: Callable[[Product, str | None], str]
    temperature: float
    default_aspect_ratio: str
    requires_white_background: bool = False


# Helpers


def get_plant_display_name(name: str) -> str:
    """Strip the ARTIFICIAL prefix and trailing height suffix from a catalog name.

    >>> get_plant_display_name("ARTIFICIAL Ficus Benjamina - 180cm")
    'Ficus Benjamina'
    """
    name = re.sub(r"^ARTIFICIAL\s+", "", name, flags=re.IGNORECASE)
    name = re.sub(r"\s*-\s*\d+cm$", "", name, flags=re.IGNORECASE)
    return name.strip()


def get_height_description(height_cm: int) -> str:
    if height_cm <= 40:
        return "a small tabletop plant"
    if height_cm <= 80:
        return "a medium-sized plant"
    if height_cm <= 120:
        return "a tall floor-standing plant"
    if height_cm <= 160:
        return "a large floor-standing plant"
    return "a very tall statement plant"


def _simple_hash(value: str) -> int:
    """31-multiplier hash over UTF-16 code units, as a non-negative signed 32-bit value.

    Characters outside the BMP contribute both surrogates, so seeds match those
    computed over UTF-16 strings elsewhere.
    """
    encoded = value.encode("utf-16-le")
    hash_value = 0
    for offset in range(0, len(encoded), 2):
        unit = int.from_bytes(encoded[offset : offset + 2], "little")
        hash_value = ((hash_value << 5) - hash_value + unit) & 0xFFFFFFFF
    if hash_value >= 0x80000000:
        hash_value -= 0x100000000
    return abs(hash_value)


def get_seed(product_id: str, image_type: str) -> int:
    """Deterministic seed for a (product, image type) pair.

    Repeated generations of the same pair are reproducible.
    """
    return _simple_hash(f"{product_id}:{_type_value(image_type)}")


def _type_value(image_type: str) -> str:
    return image_type.value if isinstance(image_type, ImageType) else image_type


def _lifestyle_scene(category: str, height_description: str) -> str:
    if category == "Tropical indoor":
        return (
            "a modern Scandinavian living room with warm natural window lighting. The room "
            "has light oak flooring, a neutral-toned linen sofa, and minimalist decor. The "
            f"plant is {height_description} and should be positioned naturally in the room "
            "-- use nearby furniture (sofa armrest, side table, bookshelf) as scale "
            "references to convey the plant's true size. The atmosphere is warm and "
            "inviting, like a professional interior design magazine photograph."
        )
    if category == "mediterranean outdoor":
        return (
            "a Mediterranean terrace or garden setting bathed in natural sunlight. The scene "
            "includes terracotta tiles, a wrought-iron bistro table, and olive or lavender "
            f"accents in the background. The plant is {height_description} and should be "
            "positioned naturally on the terrace -- use nearby furniture (table, chair, "
            "planter) as scale references. The light is warm golden-hour sunlight creating "
            "soft shadows. Professional outdoor lifestyle photography."
        )
    if category == "Artificial Plants":
        return (
            "a modern office or commercial space with sleek contemporary design. The scene "
            "includes a clean desk, minimalist shelving, or a reception area with polished "
            f"concrete or light wood surfaces. The plant is {height_description} and should "
            "be positioned naturally in the space -- use nearby furniture (desk, shelf unit, "
            "reception counter) as scale references. Cool, even professional lighting. The "
            "setting should emphasize how the artificial plant enhances a professional "
            "environment."
        )
    return (
        f"a modern, well-lit interior space. The plant is {height_description} and should "
        "be positioned naturally in the room with nearby furniture as scale references. "
        "Professional interior photography with warm natural lighting."
    )


# Templates


def _white_background(product: Product, logo: str | None = None) -> str:
    plant_name = get_plant_display_name(product.name)
    return f"""{STYLE_PREAMBLE}

Remove the background from this plant photo completely. Place the {plant_name} on a pure white background (#FFFFFF). Keep the exact proportions, colors, and details of the plant and its pot. Maintain original resolution and detail. The result should look like a professional product photograph suitable for an e-commerce catalog. Include a very subtle contact shadow at the base for natural grounding. Do not add reflections or additional elements. The plant must remain exactly as shown in the source image."""  # noqa: E501


def _measuring_tape(product: Product, logo: str | None = None) -> str:
    plant_name = get_plant_display_name(product.name)
    height = product.plant_height
    last_label = (height // 10) * 10
    return f"""{STYLE_PREAMBLE}

This is a product photo of a {plant_name} ({height}cm tall) for the professional horticultural trade platform Floriday. Using the source image as a reference for the plant's appearance, generate a new image with the following specifications:

1. First, remove the background from the source plant photo and place the plant on a pure white background.
2. On the LEFT side of the image, add a standard gray plastic measuring ruler -- the kind commonly used in nursery/horticultural photography. The ruler must:
   - Start at 0cm at the very bottom of the pot base
   - End at exactly {height}cm at the top of the plant
   - Show EXACT centimeter markings as small tick lines along its length
   - Display clearly legible numbers at every 10cm interval (0, 10, 20, 30... {last_label})
   - Show slightly longer tick marks at every 5cm interval
   - Have a flat, straight, professional appearance (standard gray measuring ruler)
   - Be positioned close to the plant but not overlapping it

The ruler must be proportionally accurate -- the distance between markings must correspond to the actual plant height shown. The numbers and tick marks must be sharp and easy to read. White background. No other elements."""  # noqa: E501


def _detail(product: Product, logo: str | None = None) -> str:
    plant_name = get_plant_display_name(product.name)
    if product.is_artificial:
        foliage_focus = (
            "Focus on the craftsmanship, material quality, and realistic appearance of the "
            "artificial foliage. Highlight the texture of the synthetic leaves, the quality of "
            "the coloring, and the attention to detail that makes this artificial plant lifelike."
        )
    else:
        foliage_focus = (
            "Focus on the natural leaf texture, veining patterns, color gradients, and surface "
            "details. Highlight the health, vibrancy, and botanical character of the living "
            "foliage."
        )
    return f"""{STYLE_PREAMBLE}

Generate a detailed close-up photograph of the leaves and foliage of this {plant_name}. Use a shallow depth of field (bokeh effect) to create a professional macro lens aesthetic -- the foreground subject should be tack-sharp while the background softly blurs. {foliage_focus} Fill the entire frame with the foliage detail. Soft, diffused natural lighting highlighting the quality of the plant material."""  # noqa: E501


def _composite(product: Product, logo: str | None = None) -> str:
    plant_name = get_plant_display_name(product.name)
    logo_instruction = (
        f"In the top-right corner, include a small, tasteful logo element: {logo}. "
        "The logo should be subtle and not overpower the product."
        if logo
        else ""
    )
    return f"""{STYLE_PREAMBLE}

Create a professional product catalog composite image for this {plant_name}. The layout should follow a clean, professional catalog style:

1. MAIN IMAGE (approximately 75% of the frame): The plant on a pure white background, showing the full plant including the pot. Maintain exact proportions and colors from the source photo. Include a very subtle contact shadow at the base.

2. DETAIL INSET (bottom-right corner): A circular inset showing a close-up of the foliage -- leaf texture, color, and quality details. The circle should have a thin white border (2-3px) and a subtle drop shadow. Size approximately 25% of the image width.

{logo_instruction}

The overall composition should be clean, balanced, and look like a professional horticultural catalog page. Pure white background for the main area. No text overlays or labels."""  # noqa: E501


def _tray(product: Product, logo: str | None = None) -> str:
    plant_name = get_plant_display_name(product.name)
    per_layer = product.carrier.per_layer
    pot_diameter = product.pot_diameter

    if product.carrier.fust_code == FUST_CODE_NO_TRAY:
        return f"""{STYLE_PREAMBLE}

Show {per_layer} of these {plant_name} plants (each in a {pot_diameter}cm pot) arranged in a neat group as they would be delivered loose -- without a tray or container (fustcode 800: "Aanvoer zonder fust"). The plants are typically delivered directly on the Danish trolley shelf. Arrange {per_layer} plants in a natural grid pattern that fits the shelf space based on the {pot_diameter}cm pot size. Professional product photography from a slightly elevated 3/4 angle on a white background. The arrangement should show how {per_layer} plants per shelf look when delivered without packaging."""  # noqa: E501

    fust_type = (product.carrier.fust_type or "tray").lower()
    return f"""{STYLE_PREAMBLE}

Show {per_layer} of these {plant_name} plants arranged in a standard nursery shipping {fust_type} for the Dutch flower auction (Floriday). The plants are in {pot_diameter}cm pots. Arrange exactly {per_layer} plants in a realistic grid pattern that fits the {fust_type} naturally based on the pot size. This is one shelf's worth of product: {per_layer} plants per tray. The {fust_type} should look like a typical black plastic horticultural transport container used in the Dutch flower trade. Professional product photography on a white background. Show the tray from a slightly elevated 3/4 angle."""  # noqa: E501


def _lifestyle(product: Product, logo: str | None = None) -> str:
    plant_name = get_plant_display_name(product.name)
    scene = _lifestyle_scene(product.category, get_height_description(product.plant_height))
    return f"""{STYLE_PREAMBLE}

Place this {plant_name} plant in {scene} The plant must maintain its exact appearance, proportions, and pot from the source photo -- it should look like the real plant was placed in this setting. The plant is the focal point of the scene. Professional lifestyle photography with natural depth of field."""  # noqa: E501


def _seasonal(product: Product, logo: str | None = None) -> str:
    plant_name = get_plant_display_name(product.name)
    if product.is_artificial:
        return f"""{STYLE_PREAMBLE}

Show this artificial {plant_name} exactly as it appears in the source photo. Since this is an artificial plant, it does not have a natural blooming cycle. Present it in its standard form on a pure white background. Professional catalog photography maintaining exact proportions and details."""  # noqa: E501

    return f"""{STYLE_PREAMBLE}

Show this {plant_name} plant in a natural, realistic blooming state during its peak flowering season. Show a botanically accurate representation of how this species naturally flowers. Do not exaggerate the number or size of blooms -- the flowering should look authentic and true to the species' natural appearance. The plant should maintain the same pot, proportions, and overall structure as the source photo. Only the addition of species-appropriate flowers/blooms should differ from the original. Place on a pure white background. Professional horticultural catalog photography style."""  # noqa: E501


def _danish_cart(product: Product, logo: str | None = None) -> str:
    plant_name = get_plant_display_name(product.name)
    layers = product.carrier.layers
    per_layer = product.carrier.per_layer
    height = product.plant_height
    pot_diameter = product.pot_diameter

    if layers == 1:
        layer_note = (
            "Since there is only 1 layer, position the shelf at an appropriate height from "
            f"the ground based on the plant height ({height}cm), not at the very top of the "
            "trolley. The shelf should be at a practical loading/viewing height."
        )
    else:
        layer_note = (
            f"Distribute the {layers} shelves evenly across the trolley height with "
            f"appropriate spacing for {height}cm tall plants."
        )

    return f"""{STYLE_PREAMBLE}

Show {per_layer} of these {plant_name} plants (each in a {pot_diameter}cm pot, {height}cm tall) arranged on a standard Danish trolley (Deense Container / DC).

Trolley specifications:
- Overall dimensions: 1350mm wide x 565mm deep x 1900mm tall
- Each shelf: 1275mm x 545mm usable space
- Silver/gray metal frame with black rubber wheels
- {layers} horizontal shelves

Each shelf holds exactly {per_layer} plants arranged in a neat grid pattern. {layer_note}

Show the trolley from a 3/4 front-right angle so all {layers} shelves are clearly visible. The plants on each shelf should be evenly spaced and stable. Professional horticultural trade photography, clean white/light gray studio background."""  # noqa: E501


PROMPT_CONFIG: dict[str, PromptSpec] = {
    ImageType.WHITE_BACKGROUND.value: PromptSpec(_white_background, 0.3, "1:1"),
    ImageType.MEASURING_TAPE.value: PromptSpec(
        _measuring_tape, 0.3, "3:4", requires_white_background=True
    ),
    ImageType.DETAIL.value: PromptSpec(_detail, 0.5, "1:1"),
    ImageType.COMPOSITE.value: PromptSpec(_composite, 0.4, "1:1"),
    ImageType.TRAY.value: PromptSpec(_tray, 0.4, "1:1", requires_white_background=True),
    ImageType.LIFESTYLE.value: PromptSpec(_lifestyle, 0.8, "1:1"),
    ImageType.SEASONAL.value: PromptSpec(_seasonal, 0.6, "1:1"),
    ImageType.DANISH_CART.value: PromptSpec(
        _danish_cart, 0.3, "3:4", requires_white_background=True
    ),
}

# Types generated from the white-background output when one is available
WHITE_BACKGROUND_DEPENDENT_TYPES: frozenset[str] = frozenset(
    image_type for image_type, spec in PROMPT_CONFIG.items() if spec.requires_white_background
)


# Public API


def build_prompt(image_type: str, product: Product, logo_description: str | None = None) -> str:
    """Build the full prompt for an image type and product.

    Unknown image types get a generic product photo prompt.
    """
    spec = PROMPT_CONFIG.get(_type_value(image_type))
    if spec is None:
        plant_name = get_plant_display_name(product.name)
        return (
            f"{STYLE_PREAMBLE}\n\n"
            f"Generate a professional photograph of a {plant_name} plant."
        )
    return spec.template(product, logo_description)


def get_prompt_config(image_type: str) -> PromptConfig:
    """Temperature and default aspect ratio for an image type."""
    spec = PROMPT_CONFIG.get(_type_value(image_type))
    if spec is None:
        return PromptConfig(DEFAULT_TEMPERATURE, DEFAULT_ASPECT_RATIO)
    return PromptConfig(spec.temperature, spec.default_aspect_ratio)


def requires_white_background(image_type: str) -> bool:
    return _type_value(image_type) in WHITE_BACKGROUND_DEPENDENT_TYPES


def build_combination_prompt(plant: Product, accessory: Accessory, scene_prompt: str) -> str:
    """Prompt for a two-image request: plant (first image) with an accessory (second image)."""
    plant_name = get_plant_display_name(plant.name)
    accessory_parts = [accessory.name]
    if accessory.material:
        accessory_parts.append(f"made of {accessory.material}")
    if accessory.color:
        accessory_parts.append(f"in {accessory.color}")
    accessory_description = ", ".join(accessory_parts)

    return f"""{STYLE_PREAMBLE}

Create a professional lifestyle photograph combining these two products:

PLANT (first image): {plant_name}, {plant.plant_height}cm tall, currently in a {plant.pot_diameter}cm nursery pot.
ACCESSORY (second image): {accessory_description}.

Remove the plant from its nursery pot and place it IN the accessory (if it's a pot, vase, or container) or NEXT TO the accessory (if it's a stand, decoration, or packaging). The combination should look natural and commercially appealing.

SCENE INSTRUCTIONS:
{scene_prompt}

IMPORTANT RULES:
- The plant must maintain its exact appearance, proportions, and foliage from the first source image
- The accessory must maintain its exact appearance, material, and color from the second source image
- The combination should look like a real product photo, not composited or artificial
- Professional lighting consistent with a high-end product catalog
- Both products are the focal point of the scene
- Ensure realistic scale: the plant height ({plant.plant_height}cm) and pot diameter ({plant.pot_diameter}cm) should guide how the plant fits with the accessory"""  # noqa: E501


PLACEHOLDER_PRODUCT = Product(
    id="preview",
    name="Plant Name",
    category="Tropical indoor",
    carrier=Carrier(
        fust_code=212, fust_type="Tray", carriage_type="DC", layers=4, per_layer=8, units=32
    ),
    pot_diameter=17,
    plant_height=100,
    is_artificial=False,
    can_bloom=True,
)


def get_prompt_template(image_type: str) -> str:
    """Render an image type's template against a placeholder product (for previews).

    Returns an empty string for unknown image types.
    """
    spec = PROMPT_CONFIG.get(_type_value(image_type))
    if spec is None:
        return ""
    return spec.template(PLACEHOLDER_PRODUCT, None)
