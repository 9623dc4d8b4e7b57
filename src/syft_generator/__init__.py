"""Syft generator node: admission-controlled SBOM generation on Tekton."""

__version__ = "0.1.0"
