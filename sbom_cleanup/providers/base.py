"""Activity oracle interface."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ActivityOracle(Protocol):
    """Answers whether a build is still referenced by a live release.

    Implementations raise ``RemoteQueryError`` or ``SerializationError`` when
    the answer cannot be determined; they never report "inactive" on failure.
    """

    async def is_build_active(self, collection_id: str, project_id: str, build_number: str) -> bool: ...

    async def aclose(self) -> None: ...
