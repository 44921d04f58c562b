# packmgr/__init__.py
"""Local modpack installer that keeps instance directories in sync with their manifests."""

__version__ = "0.3.0"
