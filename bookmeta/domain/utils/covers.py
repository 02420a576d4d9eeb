"""
Cover image quality ranking.

A persisted cover is only replaced when an incoming candidate is strictly
better. Candidates are compared by a coarse quality tier first, then by
pixel area, then by the high-resolution flag.

Tiers:
    5  durable CDN copy and high resolution
    4  high resolution
    3  durable CDN copy, or large enough for search result display
    2  any other renderable image
    0  nothing renderable
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

HIGH_RES_PIXEL_THRESHOLD = 320_000
DISPLAY_MIN_WIDTH = 180
DISPLAY_MIN_HEIGHT = 280

# Aspect ratio (height / width) bounds for something shaped like a cover
MIN_ASPECT_RATIO = 1.0
MAX_ASPECT_RATIO = 2.0

CDN_HOST_MARKERS = ("cdn.", ".cloudfront.net", ".digitaloceanspaces.com", "s3.amazonaws.com")

_NULL_EQUIVALENTS = {"null", "none", "undefined", "n/a"}
_PLACEHOLDER_MARKER = "placeholder-book-cover"

# Size names in order of preference, best first
IMAGE_SIZE_PRIORITY = (
    "canonical",
    "extraLarge",
    "large",
    "medium",
    "small",
    "thumbnail",
    "smallThumbnail",
)

# Typical dimensions for provider size names: (width, height, high_res)
_SIZE_ESTIMATES = {
    "extraLarge": (800, 1200, True),
    "large": (600, 900, True),
    "medium": (400, 600, False),
    "small": (300, 450, False),
    "thumbnail": (128, 192, False),
    "smallThumbnail": (64, 96, False),
}


@dataclass(frozen=True)
class DimensionEstimate:
    width: Optional[int]
    height: Optional[int]
    high_resolution: bool


def estimate_from_type(size_name: Optional[str]) -> DimensionEstimate:
    """Best guess of the pixel size behind a provider image size name."""
    width, height, high_res = _SIZE_ESTIMATES.get(size_name or "", (None, None, False))
    return DimensionEstimate(width=width, height=height, high_resolution=high_res)


def is_renderable(url: Optional[str]) -> bool:
    if not url or not url.strip():
        return False
    lowered = url.strip().lower()
    return lowered not in _NULL_EQUIVALENTS and _PLACEHOLDER_MARKER not in lowered


def is_cdn_url(url: Optional[str]) -> bool:
    if not is_renderable(url):
        return False
    lowered = url.lower()
    return any(marker in lowered for marker in CDN_HOST_MARKERS)


def is_high_resolution(width: Optional[int], height: Optional[int]) -> bool:
    if not width or not height or width <= 0 or height <= 0:
        return False
    return width * height >= HIGH_RES_PIXEL_THRESHOLD


def meets_display_threshold(width: Optional[int], height: Optional[int]) -> bool:
    if not width or not height:
        return False
    return width >= DISPLAY_MIN_WIDTH and height >= DISPLAY_MIN_HEIGHT


def _has_bad_aspect_ratio(width: Optional[int], height: Optional[int]) -> bool:
    if not width or not height or width <= 0 or height <= 0:
        return False
    ratio = height / width
    return not MIN_ASPECT_RATIO <= ratio <= MAX_ASPECT_RATIO


def rank_url(
    url: Optional[str],
    width: Optional[int] = None,
    height: Optional[int] = None,
    high_resolution: Optional[bool] = None,
) -> int:
    """Quality tier for a single image URL."""
    if not is_renderable(url):
        return 0
    if _has_bad_aspect_ratio(width, height):
        return 0

    # A stored object key without a scheme lives in our own bucket
    from_bucket = not url.startswith(("http://", "https://"))
    has_cdn = from_bucket or is_cdn_url(url)
    high_res = bool(high_resolution) or is_high_resolution(width, height)

    if has_cdn and high_res:
        return 5
    if high_res:
        return 4
    if has_cdn or meets_display_threshold(width, height):
        return 3
    return 2


def rank(
    cdn_path: Optional[str],
    external_url: Optional[str],
    width: Optional[int] = None,
    height: Optional[int] = None,
    high_resolution: Optional[bool] = None,
) -> int:
    """Quality tier preferring the durable CDN copy over the provider URL."""
    if is_renderable(cdn_path):
        return rank_url(cdn_path, width, height, high_resolution)
    return rank_url(external_url, width, height, high_resolution)


@dataclass(frozen=True)
class CoverQualitySnapshot:
    """The comparable quality facts of one stored or incoming cover."""

    score: int
    width: Optional[int] = None
    height: Optional[int] = None
    high_resolution: bool = False

    @property
    def pixel_area(self) -> int:
        if not self.width or not self.height:
            return 0
        return self.width * self.height

    def _sort_key(self) -> Tuple[int, int, int]:
        return (self.score, self.pixel_area, int(self.high_resolution))

    def is_strictly_better_than(self, other: Optional["CoverQualitySnapshot"]) -> bool:
        if other is None:
            return self.score > 0
        return self._sort_key() > other._sort_key()

    @classmethod
    def of(
        cls,
        url: Optional[str],
        width: Optional[int],
        height: Optional[int],
        high_resolution: Optional[bool],
        cdn_path: Optional[str] = None,
    ) -> "CoverQualitySnapshot":
        high_res = bool(high_resolution) or is_high_resolution(width, height)
        return cls(
            score=rank(cdn_path, url, width, height, high_res),
            width=width,
            height=height,
            high_resolution=high_res,
        )


def incoming_quality(image_links: Optional[Mapping[str, str]]) -> Optional[CoverQualitySnapshot]:
    """Best quality among provider links, using size-name estimates."""
    best: Optional[CoverQualitySnapshot] = None
    for size_name, url in (image_links or {}).items():
        if not is_renderable(url):
            continue
        estimate = estimate_from_type(size_name)
        candidate = CoverQualitySnapshot.of(
            url, estimate.width, estimate.height, estimate.high_resolution
        )
        if candidate.is_strictly_better_than(best):
            best = candidate
    return best


def best_image_link(image_links: Optional[Mapping[str, str]]) -> Optional[Tuple[str, str]]:
    """
    Pick the preferred (size_name, url) pair from a size-keyed link map.

    Size names outside the known priority list are considered last.
    """
    if not image_links:
        return None

    for size_name in IMAGE_SIZE_PRIORITY:
        url = image_links.get(size_name)
        if is_renderable(url):
            return size_name, url

    for size_name, url in image_links.items():
        if is_renderable(url):
            return size_name, url
    return None


def select_preferred_image_url(image_links: Optional[Mapping[str, str]]) -> Optional[str]:
    best = best_image_link(image_links)
    return best[1] if best else None
