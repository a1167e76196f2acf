"""Azure DevOps Release Management client used as the activity oracle."""

from __future__ import annotations

import base64
from collections.abc import Iterator
from typing import Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sbom_cleanup.config import Settings
from sbom_cleanup.core.exceptions import RemoteQueryError, SerializationError
from sbom_cleanup.core.logging import get_logger

logger = get_logger(__name__)

CONTINUATION_HEADER = "x-ms-continuationtoken"
DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 50


class _ResponseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ArtifactVersion(_ResponseModel):
    id: Optional[str] = None
    name: Optional[str] = None


class DefinitionReference(_ResponseModel):
    version: Optional[ArtifactVersion] = None


class ReleaseArtifact(_ResponseModel):
    alias: Optional[str] = None
    definition_reference: Optional[DefinitionReference] = Field(
        default=None, alias="definitionReference"
    )

    @property
    def version_name(self) -> Optional[str]:
        if self.definition_reference is None or self.definition_reference.version is None:
            return None
        return self.definition_reference.version.name


class Release(_ResponseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    # None means the artifact expansion was not honoured.
    artifacts: Optional[list[ReleaseArtifact]] = None


class ReleaseList(_ResponseModel):
    count: int
    value: list[Release] = Field(default_factory=list)
    # Taken from the response header, not the body.
    continuation_token: Optional[str] = Field(default=None, exclude=True)

    def iter_versions(self) -> Iterator[str]:
        """Lazily yield every artifact version name across all releases.

        Raises SerializationError on the first release or artifact whose
        version cannot be read.
        """
        if self.count > 0 and not self.value:
            raise SerializationError(
                "Release list reports releases but contains none",
                details={"count": self.count},
            )
        for release in self.value:
            if release.artifacts is None:
                raise SerializationError(
                    "Release is missing its artifact list",
                    details={"release_id": release.id},
                )
            for artifact in release.artifacts:
                version = artifact.version_name
                if version is None:
                    raise SerializationError(
                        "Release artifact has no version identifier",
                        details={"release_id": release.id, "alias": artifact.alias},
                    )
                yield version


class AzureReleaseClient:
    """Release API client. One credential is attached for the process lifetime."""

    def __init__(
        self,
        base_url: str,
        token: str,
        auth_scheme: str = "basic",
        api_version: str = "7.1",
        timeout: float = 30,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.auth_scheme = auth_scheme
        self.api_version = api_version
        self.timeout = timeout
        self.page_size = page_size
        self.max_pages = max_pages
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "AzureReleaseClient":
        return cls(
            base_url=settings.release_api_base_url,
            token=settings.release_api_token,
            auth_scheme=settings.release_api_auth_scheme,
            api_version=settings.release_api_version,
            timeout=settings.release_api_timeout_seconds,
            page_size=settings.release_api_page_size,
            max_pages=settings.release_api_max_pages,
        )

    def _authorization(self) -> str:
        if self.auth_scheme == "bearer":
            return f"Bearer {self.token}"
        # Personal access tokens go in the password slot with an empty user.
        encoded = base64.b64encode(f":{self.token}".encode("utf-8")).decode("ascii")
        return f"Basic {encoded}"

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {
                "Accept": "application/json",
                "Authorization": self._authorization(),
            }
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AzureReleaseClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @staticmethod
    def releases_path(collection_id: str, project_id: str) -> str:
        return f"/{quote(collection_id, safe='')}/{quote(project_id, safe='')}/_apis/release/releases"

    async def list_releases(
        self,
        collection_id: str,
        project_id: str,
        continuation_token: Optional[str] = None,
    ) -> ReleaseList:
        """Fetch one page of releases for a project with artifact metadata expanded."""
        path = self.releases_path(collection_id, project_id)
        params = {
            "$expand": "artifacts",
            "$top": str(self.page_size),
            "api-version": self.api_version,
        }
        if continuation_token:
            params["continuationToken"] = continuation_token
        try:
            response = await self.client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise RemoteQueryError(
                f"Release API request failed: {type(exc).__name__}",
                status_code=None,
                body=str(exc),
            ) from exc

        if not response.is_success:
            raise RemoteQueryError(
                f"Release API returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            page = ReleaseList.model_validate_json(response.content)
        except ValidationError as exc:
            raise SerializationError(
                "Release API response could not be parsed",
                details={
                    "collection_id": collection_id,
                    "project_id": project_id,
                    "errors": exc.errors(include_url=False, include_input=False),
                },
            ) from exc
        page.continuation_token = response.headers.get(CONTINUATION_HEADER) or None
        return page

    async def is_build_active(self, collection_id: str, project_id: str, build_number: str) -> bool:
        """True if any release artifact's version name equals ``build_number`` exactly.

        Pages are fetched only until the first match. Running past
        ``max_pages`` raises RemoteQueryError rather than answering "inactive".
        """
        token: Optional[str] = None
        pages = 0
        releases_seen = 0
        active = False
        while True:
            page = await self.list_releases(collection_id, project_id, continuation_token=token)
            pages += 1
            releases_seen += page.count
            if page.count > 0 and any(version == build_number for version in page.iter_versions()):
                active = True
                break
            token = page.continuation_token
            if not token:
                break
            if pages >= self.max_pages:
                raise RemoteQueryError(
                    f"Release list exceeded {self.max_pages} pages",
                    status_code=None,
                    body=f"continuationToken={token}",
                )

        logger.debug(
            "Release lookup complete",
            data={
                "collection_id": collection_id,
                "project_id": project_id,
                "build_number": build_number,
                "pages": pages,
                "release_count": releases_seen,
                "active": active,
            },
        )
        return active
