"""
Parsing of free-text physical dimensions into centimeters.

Providers report dimensions as strings such as "24.00 cm", "240 mm" or
"9.5 inches". A value without a unit is taken as centimeters.
"""

import re
from dataclasses import dataclass
from typing import Optional

_DIMENSION_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(cm|mm|in|inches)?", re.IGNORECASE)

_CM_PER_INCH = 2.54


@dataclass(frozen=True)
class ParsedDimensions:
    """Dimensions in centimeters; any of them may be missing."""

    height: Optional[float] = None
    width: Optional[float] = None
    thickness: Optional[float] = None

    def has_any_dimension(self) -> bool:
        return self.height is not None or self.width is not None or self.thickness is not None


def parse_to_centimeters(text: Optional[str]) -> Optional[float]:
    """
    Parse the first number (and optional unit) in ``text``.

    Example:
        >>> parse_to_centimeters("240 mm")
        24.0
    """
    if text is None or not text.strip():
        return None

    match = _DIMENSION_PATTERN.search(text.strip())
    if match is None:
        return None

    value = float(match.group(1))
    unit = (match.group(2) or "cm").lower()

    if unit == "mm":
        return value / 10.0
    if unit in ("in", "inches"):
        return value * _CM_PER_INCH
    return value


def parse_all(
    height: Optional[str],
    width: Optional[str],
    thickness: Optional[str],
) -> ParsedDimensions:
    return ParsedDimensions(
        height=parse_to_centimeters(height),
        width=parse_to_centimeters(width),
        thickness=parse_to_centimeters(thickness),
    )
