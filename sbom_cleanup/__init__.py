"""SBOM cleanup worker: archives SBOM records for builds no longer in any release."""

__version__ = "1.0.0"
