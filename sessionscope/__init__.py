"""Project and session discovery across Windows, WSL and UNC path namespaces."""

__version__ = "0.1.0"
