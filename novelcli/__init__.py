"""novelcli: resilient web-novel chapter translation pipeline."""

__version__ = "0.1.0"
