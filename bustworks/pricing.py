"""
Pricing

Fixed bust prices and shipping rates (in cents) and the filament catalogue.
"""

# Bust height (mm) -> price in cents
PRICE_BY_SIZE_CENTS = {
    100: 3900,
    200: 6900,
    300: 9900,
}

BUST_SIZES_MM = tuple(sorted(PRICE_BY_SIZE_CENTS))


def price_for_size_mm(size_mm: int) -> int:
    """
    Get the price for a bust size.

    Raises:
        ValueError: If the size is not one of the offered sizes
    """
    if size_mm not in PRICE_BY_SIZE_CENTS:
        raise ValueError(f"Invalid bust size: {size_mm}. Available: {list(BUST_SIZES_MM)}")
    return PRICE_BY_SIZE_CENTS[size_mm]


def shipping_cents_for_height(height_mm: int) -> int:
    """Flat shipping tiers by bust height."""
    if height_mm <= 100:
        return 990
    if height_mm <= 200:
        return 1290
    return 1590


# Print materials offered at checkout
FILAMENT_COLORS = ("marble_white", "stone_gray", "wood_tone")
