"""Canonical renderings of the two certificate binding values.

Both builders are pure: the output depends only on the argument, never on what the
configuration store currently holds.
"""

from __future__ import annotations

SUBJECT_PREFIX = "CN="
SYSTEM_STORE = "MY\\System"
REFERENCE_PREFIX = "MY;System;"

# Field values are escaped for exactly these two characters; the field separators
# and the identity itself stay literal.
_ESCAPES = {"=": "%3d", "\\": "%5C"}


def _encode(text: str) -> str:
    return "".join(_ESCAPES.get(char, char) for char in text)


def build_search_criteria(ent_dm_id: str) -> str:
    """Render `Subject=CN%3d<EntDMID>&Stores=MY%5CSystem`."""
    return f"Subject={_encode(SUBJECT_PREFIX)}{ent_dm_id}&Stores={_encode(SYSTEM_STORE)}"


def build_reference(thumbprint: str) -> str:
    return REFERENCE_PREFIX + thumbprint
