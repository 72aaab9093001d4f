"""containerbuild: feature installers for developer-tooling container images."""

__version__ = "0.1.0"
