"""Per-parent reply window persisted in the view URL.

The query parameter ``rv`` holds ``<comment_id>:<visible_count>`` pairs
separated by commas, e.g. ``rv=3f2a...:6,9b1c...:9``. Parsing never fails:
entries that are not a UUID followed by a positive count are dropped.
"""

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
from uuid import UUID


DEFAULT_REPLY_WINDOW = 3
EXPANSION_PARAM = "rv"


def parse_expansion(value: str | None) -> dict[str, int]:
    """Decode an ``rv`` value.

    >>> parse_expansion("bogus,,x:y")
    {}
    """
    state: dict[str, int] = {}
    if not value:
        return state
    for entry in value.split(","):
        comment_id, sep, count = entry.strip().partition(":")
        if not sep:
            continue
        try:
            key = str(UUID(comment_id))
            visible = int(count)
        except ValueError:
            continue
        if visible > 0:
            state[key] = visible
    return state


def serialize_expansion(
    state: dict[str, int], default: int = DEFAULT_REPLY_WINDOW
) -> str:
    """Encode ``state`` sorted by id, leaving out default windows."""
    return ",".join(
        f"{comment_id}:{count}"
        for comment_id, count in sorted(state.items())
        if count > default
    )


def expansion_from_url(url: str) -> dict[str, int]:
    query = dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))
    return parse_expansion(query.get(EXPANSION_PARAM))


def expansion_to_url(
    url: str, state: dict[str, int], default: int = DEFAULT_REPLY_WINDOW
) -> str:
    """Return ``url`` with ``rv`` replaced, or removed when nothing is expanded."""
    parts = urlsplit(url)
    query = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k != EXPANSION_PARAM
    ]
    encoded = serialize_expansion(state, default)
    if encoded:
        query.append((EXPANSION_PARAM, encoded))
    return urlunsplit(parts._replace(query=urlencode(query, safe=":,")))
