"""URL normalization helpers."""

from typing import Optional


def normalize_to_https(url: Optional[str]) -> Optional[str]:
    """
    Upgrade ``http://`` links to ``https://``.

    Blank values become None; protocol-relative ``//host`` links get an
    explicit https scheme.
    """
    if url is None:
        return None

    stripped = url.strip()
    if not stripped:
        return None

    if stripped.startswith("http://"):
        return "https://" + stripped[len("http://"):]
    if stripped.startswith("//"):
        return "https:" + stripped
    return stripped
