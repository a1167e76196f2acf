"""Shared test doubles and payload builders."""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Tuple, Union

from sbom_cleanup.core.exceptions import DataAccessError
from sbom_cleanup.services.record_source import InventoryRecord

Identity = Tuple[str, str, str]


def release_payload(*releases: Iterable[str]) -> dict:
    """Build a release-list body; each positional argument is one release's artifact versions."""
    value = []
    for index, versions in enumerate(releases, start=1):
        value.append(
            {
                "id": index,
                "name": f"Release-{index}",
                "artifacts": [
                    {
                        "alias": f"_build_{n}",
                        "definitionReference": {"version": {"id": str(1000 + n), "name": v}},
                    }
                    for n, v in enumerate(versions)
                ],
            }
        )
    return {"count": len(value), "value": value}


class FakeRecordSource:
    """In-memory record source keyed by identity triple."""

    def __init__(self, identities: Iterable[Identity] = (), archived: Iterable[Identity] = ()):
        self.rows: Dict[Identity, bool] = {identity: False for identity in identities}
        for identity in archived:
            self.rows[identity] = True
        self.fetch_error: Exception | None = None
        self.archive_errors: Dict[Identity, Exception] = {}
        self.archive_calls: List[Identity] = []

    def is_archived(self, identity: Identity) -> bool:
        return self.rows[identity]

    async def fetch_pending(self) -> list[InventoryRecord]:
        if self.fetch_error is not None:
            raise self.fetch_error
        return [
            InventoryRecord(collection_id=c, project_id=p, build_number=b, archived=False)
            for (c, p, b), archived in self.rows.items()
            if not archived
        ]

    async def mark_archived(self, collection_id: str, project_id: str, build_number: str) -> int:
        identity = (collection_id, project_id, build_number)
        self.archive_calls.append(identity)
        if identity in self.archive_errors:
            raise self.archive_errors[identity]
        if identity not in self.rows or self.rows[identity]:
            return 0
        self.rows[identity] = True
        return 1


OracleAnswer = Union[bool, Exception]


class FakeOracle:
    """Answers by (collection, project, build); unknown identities are inactive."""

    def __init__(self, answers: Dict[Identity, OracleAnswer] | None = None, delay: float = 0.0):
        self.answers = dict(answers or {})
        self.delay = delay
        self.calls: List[Identity] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def is_build_active(self, collection_id: str, project_id: str, build_number: str) -> bool:
        identity = (collection_id, project_id, build_number)
        self.calls.append(identity)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            answer = self.answers.get(identity, False)
            if isinstance(answer, Exception):
                raise answer
            return answer
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        self.closed = True


def failing_source() -> FakeRecordSource:
    source = FakeRecordSource()
    source.fetch_error = DataAccessError("connection refused")
    return source
