"""
Payload parsing utilities for upstream community mindshare responses.

Turns the raw upstream JSON into Metrics and ranked Entry objects. Parsing is
strict: a single non-numeric or out-of-range value fails the whole extraction
so corrupted metrics are never persisted.
"""

import math
from typing import Any, List, Optional

from mindshare.config import Config
from mindshare.constants import PaginationConstants, UpstreamFields
from mindshare.data_models.leaderboard import Entry, Metrics
from mindshare.utils.exceptions import MalformedPayloadError


def validate_payload(payload: Any) -> dict:
    """
    Check the structural shape of an upstream payload.

    Returns:
        The community mindshare section of the payload

    Raises:
        MalformedPayloadError: If the payload is not a mapping with a
            community mindshare mapping inside it
    """
    if not isinstance(payload, dict):
        raise MalformedPayloadError("<root>", f"expected an object, got {type(payload).__name__}")

    section = payload.get(UpstreamFields.ROOT)
    if not isinstance(section, dict):
        raise MalformedPayloadError(UpstreamFields.ROOT, "missing or not an object")

    ranked = section.get(UpstreamFields.RANKED_LIST)
    if ranked is not None and not isinstance(ranked, list):
        raise MalformedPayloadError(UpstreamFields.RANKED_LIST, "expected a list")

    return section


def parse_count(value: Any, field: str) -> int:
    """
    Coerce a counter to a non-negative integer.

    Accepts ints, integral floats and numeric strings such as "1234",
    " 1234 " or "1234.0".

    Raises:
        MalformedPayloadError: If the value is missing, non-numeric,
            fractional or negative
    """
    if value is None or isinstance(value, bool):
        raise MalformedPayloadError(field, f"expected a count, got {value!r}")

    if isinstance(value, int):
        number = value
    elif isinstance(value, (float, str)):
        try:
            as_float = float(value.strip() if isinstance(value, str) else value)
        except ValueError:
            raise MalformedPayloadError(field, f"non-numeric value {value!r}")
        if math.isnan(as_float) or math.isinf(as_float) or not as_float.is_integer():
            raise MalformedPayloadError(field, f"not a whole number: {value!r}")
        number = int(as_float)
    else:
        raise MalformedPayloadError(field, f"expected a count, got {type(value).__name__}")

    if number < 0:
        raise MalformedPayloadError(field, f"negative value {number}")
    return number


def parse_share(value: Any, field: str) -> float:
    """Coerce a mindshare value to a float in [0, 1]."""
    if value is None or isinstance(value, bool):
        raise MalformedPayloadError(field, f"expected a share, got {value!r}")
    try:
        share = float(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError):
        raise MalformedPayloadError(field, f"non-numeric value {value!r}")
    if math.isnan(share) or not 0.0 <= share <= 1.0:
        raise MalformedPayloadError(field, f"share {value!r} outside [0, 1]")
    return share


def profile_url(username: str, base_url: Optional[str] = None) -> str:
    """Build the profile reference URL for a username."""
    return f"{base_url or Config.PROFILE_URL_BASE}{username}"


def extract_metrics(payload: Any) -> Metrics:
    """Extract summary metrics from an upstream payload."""
    section = validate_payload(payload)
    root = UpstreamFields.ROOT
    return Metrics(
        total_participants=parse_count(
            section.get(UpstreamFields.TOTAL_PARTICIPANTS), f"{root}.{UpstreamFields.TOTAL_PARTICIPANTS}"
        ),
        total_activities=parse_count(
            section.get(UpstreamFields.TOTAL_ACTIVITIES), f"{root}.{UpstreamFields.TOTAL_ACTIVITIES}"
        ),
        top_impressions=parse_count(
            section.get(UpstreamFields.TOP_IMPRESSIONS), f"{root}.{UpstreamFields.TOP_IMPRESSIONS}"
        ),
        top_engagements=parse_count(
            section.get(UpstreamFields.TOP_ENGAGEMENTS), f"{root}.{UpstreamFields.TOP_ENGAGEMENTS}"
        ),
    )


def extract_entries(payload: Any, limit: int = PaginationConstants.MAX_PAGE_SIZE,
                    offset: int = 0, base_url: Optional[str] = None) -> List[Entry]:
    """
    Extract ranked entries from an upstream payload.

    Every item is parsed before slicing so a malformed row anywhere in the
    list fails the extraction.

    Args:
        payload: Raw upstream payload
        limit: Maximum number of entries to return
        offset: Number of leading entries (by rank) to skip
        base_url: Profile URL prefix, defaults to Config.PROFILE_URL_BASE

    Returns:
        Entries ordered by ascending rank

    Raises:
        MalformedPayloadError: On any invalid field or duplicate rank
    """
    if limit < 0 or offset < 0:
        raise ValueError("limit and offset must not be negative")

    section = validate_payload(payload)
    items = section.get(UpstreamFields.RANKED_LIST) or []

    entries = []
    seen_ranks = set()
    for index, item in enumerate(items):
        prefix = f"{UpstreamFields.RANKED_LIST}[{index}]"
        if not isinstance(item, dict):
            raise MalformedPayloadError(prefix, "expected an object")

        rank = parse_count(item.get(UpstreamFields.RANK), f"{prefix}.{UpstreamFields.RANK}")
        if rank < 1:
            raise MalformedPayloadError(f"{prefix}.{UpstreamFields.RANK}", "rank must be positive")
        if rank in seen_ranks:
            raise MalformedPayloadError(f"{prefix}.{UpstreamFields.RANK}", f"duplicate rank {rank}")
        seen_ranks.add(rank)

        username = item.get(UpstreamFields.USERNAME)
        if not isinstance(username, str) or not username.strip():
            raise MalformedPayloadError(f"{prefix}.{UpstreamFields.USERNAME}", "missing username")
        username = username.strip()

        entries.append(Entry(
            rank=rank,
            username=username,
            mindshare=parse_share(item.get(UpstreamFields.MINDSHARE), f"{prefix}.{UpstreamFields.MINDSHARE}"),
            activity_count=parse_count(item.get(UpstreamFields.ACTIVITY_COUNT), f"{prefix}.{UpstreamFields.ACTIVITY_COUNT}"),
            impressions=parse_count(item.get(UpstreamFields.IMPRESSIONS), f"{prefix}.{UpstreamFields.IMPRESSIONS}"),
            engagements=parse_count(item.get(UpstreamFields.ENGAGEMENTS), f"{prefix}.{UpstreamFields.ENGAGEMENTS}"),
            profile_url=profile_url(username, base_url),
        ))

    entries.sort(key=lambda e: e.rank)
    return entries[offset:offset + limit]
