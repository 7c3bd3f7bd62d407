"""Group display-name cache.

Names are memoized for the process lifetime: a group renamed after the first
lookup keeps its old name until restart. Failed lookups are not cached.
"""

from typing import Any, Awaitable, Callable

from wacollector.observability.logging import get_logger
from wacollector.observability.redaction import safe_log_context

logger = get_logger(__name__)

MetadataLookup = Callable[[str], Awaitable[dict[str, Any]]]


class GroupNameCache:
    """Append-only map of group id -> display name."""

    def __init__(self, lookup: MetadataLookup) -> None:
        self._lookup = lookup
        self._names: dict[str, str] = {}

    def __contains__(self, group_id: str) -> bool:
        return group_id in self._names

    def __len__(self) -> int:
        return len(self._names)

    async def resolve_name(self, group_id: str) -> str:
        """Cached name, or one metadata lookup; the raw id on failure."""
        cached = self._names.get(group_id)
        if cached is not None:
            return cached

        try:
            metadata = await self._lookup(group_id)
        except Exception as e:
            logger.warning(
                "group metadata lookup failed",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            return group_id

        subject = metadata.get("subject") if isinstance(metadata, dict) else None
        name = subject.strip() if isinstance(subject, str) and subject.strip() else group_id
        self._names[group_id] = name
        return name
