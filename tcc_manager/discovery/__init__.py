"""Application discovery and bundle identifier resolution."""

from .identifier import IdentifierResolver
from .scanner import AppDiscovery

__all__ = ["AppDiscovery", "IdentifierResolver"]
