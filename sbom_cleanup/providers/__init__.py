"""Activity oracle providers."""

from sbom_cleanup.providers.azure_releases import AzureReleaseClient, ReleaseList
from sbom_cleanup.providers.base import ActivityOracle

__all__ = ["ActivityOracle", "AzureReleaseClient", "ReleaseList"]
