"""
Bustworks Prompt Templates

Curated prompts for clay bust preview generation.
"""

# Rules shared by every style: printable single mesh, matte print-like render
BASE_RULES = """\
SUBJECT:
- Create a realistic sculpted bust of the person in the reference photo.

GEOMETRY REQUIREMENTS (VERY IMPORTANT):
- The output must be a SINGLE continuous sculpture (one connected mesh / one object).
- The sculpture ends around mid-chest (bust), with a clean, intentional termination.
- The bottom of the sculpture must be a FLAT plane so it can stand and be 3D printed.
- No floating parts. No thin fragile spikes. No text. No watermark. No props.

PEDESTAL / BASE RULES (VERY IMPORTANT):
- You MAY include an integrated sculpt base under the bust AS PART OF THE SAME MESH.
- You MUST NOT create a separate pedestal, plinth, stand, platform or column.
- The sculpture must NOT be placed on top of any separate object.

PRINT-FAITHFUL PREVIEW LOOK (CRITICAL):
- Render the sculpture as a SINGLE uniform material like matte gray PLA / matte clay.
- NO marble, NO bronze, NO metal, NO stone veining, NO glossy specular highlights.
- NO two-tone materials. NO color variation across head vs base.
- Neutral studio background, centered composition."""

VARIATION_RULES = """\
VARIATION ENCOURAGEMENT:
- Keep likeness accurate, but let the STYLE shape the neckline cut, the integrated
  base silhouette and the overall design language.
- Style must visibly affect the sculpt, not the material."""

# Style presets with their geometry blocks
STYLE_PRESETS = {
    "classical": {
        "name": "Classical",
        "description": "Museum-style sculpt with traditional proportions",
        "prompt": (
            "STYLE (GEOMETRY): CLASSICAL / MUSEUM SCULPT\n"
            "- Classical proportions and refined traditional sculpt feel.\n"
            "- Slightly idealized realism; clean anatomy and refined facial planes.\n"
            "- Integrated base (if present) may use gentle bevels, still ONE piece with a flat bottom."
        ),
    },
    "modern": {
        "name": "Modern",
        "description": "Contemporary silhouette with simplified surfaces",
        "prompt": (
            "STYLE (GEOMETRY): CONTEMPORARY / MODERN SCULPT\n"
            "- Cleaner modern silhouette and design language.\n"
            "- Slightly simplified surfaces, tasteful contemporary feel.\n"
            "- Integrated base (if present) should be minimal and geometric."
        ),
    },
    "custom": {
        "name": "Custom",
        "description": "Follows the customer's own style notes",
        "prompt": (
            "STYLE (GEOMETRY): CUSTOM (FOLLOW USER NOTES FIRST)\n"
            "- Strongly prioritize the user's custom style notes below.\n"
            "- Keep it printable and single-piece with a flat bottom."
        ),
    },
}

DEFAULT_STYLE = "classical"


def build_preview_prompt(style: str, style_hint: str | None = None) -> str:
    """
    Build the image-to-image prompt for a clay preview.

    Unknown styles fall back to classical.

    Args:
        style: Style preset key (classical, modern, custom)
        style_hint: Optional free-text notes from the customer

    Returns:
        The full prompt text
    """
    preset = STYLE_PRESETS.get((style or "").strip().lower(), STYLE_PRESETS[DEFAULT_STYLE])

    blocks = [BASE_RULES, preset["prompt"]]
    hint = (style_hint or "").strip()
    if hint:
        blocks.append(f"USER STYLE NOTES (IMPORTANT):\n{hint}")
    blocks.append(VARIATION_RULES)

    return "\n\n".join(blocks)


def get_available_styles() -> list[dict]:
    """
    Get list of available style presets with metadata.

    Returns:
        List of style dictionaries with id, name, and description
    """
    return [
        {
            "id": key,
            "name": preset["name"],
            "description": preset["description"],
        }
        for key, preset in STYLE_PRESETS.items()
    ]
