"""Path building for the location tree.

A path is a dot-separated string of normalized segments, e.g.
``garage.top_shelf.bin_3``. A node's path is always its parent's path plus its
own segment; root nodes have a single segment. Nothing in this module touches
the database.
"""
import re
import unicodedata
from typing import List, Optional

from box_organizer.config import settings
from box_organizer.services.errors import MaxDepthExceeded

SEPARATOR = "."
FALLBACK_SEGMENT = "location"

# Letters that do not decompose under NFKD
_TRANSLITERATIONS = str.maketrans({
    "ł": "l", "Ł": "L",
    "đ": "d", "Đ": "D",
    "ø": "o", "Ø": "O",
    "ß": "ss",
    "æ": "ae", "Æ": "AE",
    "œ": "oe", "Œ": "OE",
    "þ": "th", "Þ": "TH",
})

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize(name: str) -> str:
    """
    Turn a display name into a path segment.
    
    Accents are transliterated to ASCII, the text is lowercased and every run
    of other characters becomes a single underscore. Leading and trailing
    underscores are dropped. A name with nothing usable left maps to
    ``"location"``.
    
    >>> normalize("Garaż Metalowy")
    'garaz_metalowy'
    >>> normalize("Półka #1")
    'polka_1'
    """
    text = unicodedata.normalize("NFKD", name.translate(_TRANSLITERATIONS))
    text = text.encode("ascii", "ignore").decode("ascii").lower()
    segment = _NON_ALNUM.sub("_", text).strip("_")
    return segment or FALLBACK_SEGMENT


def segments_of(path: str) -> List[str]:
    return path.split(SEPARATOR)


def depth_of(path: str) -> int:
    """Number of segments in ``path``."""
    return len(segments_of(path))


def parent_path_of(path: str) -> Optional[str]:
    """Path of the parent node, or None for a root node."""
    head, sep, _ = path.rpartition(SEPARATOR)
    return head if sep else None


def compose(parent_path: Optional[str], segment: str) -> str:
    """
    Append ``segment`` to ``parent_path`` (or start a root path).
    
    Raises:
        MaxDepthExceeded: the result would be deeper than MAX_LOCATION_DEPTH
    """
    path = f"{parent_path}{SEPARATOR}{segment}" if parent_path else segment
    if depth_of(path) > settings.MAX_LOCATION_DEPTH:
        raise MaxDepthExceeded(
            f"Locations can be nested at most {settings.MAX_LOCATION_DEPTH} levels deep"
        )
    return path


def descendant_prefix(path: str) -> str:
    """Prefix shared by every descendant of ``path``."""
    return f"{path}{SEPARATOR}"


def is_descendant(path: str, ancestor: str) -> bool:
    return path.startswith(descendant_prefix(ancestor))


def rebase(path: str, old_prefix: str, new_prefix: str) -> str:
    """Replace the ``old_prefix`` path at the start of ``path`` with ``new_prefix``."""
    if path != old_prefix and not is_descendant(path, old_prefix):
        raise ValueError(f"{path!r} is not under {old_prefix!r}")
    return new_prefix + path[len(old_prefix):]
