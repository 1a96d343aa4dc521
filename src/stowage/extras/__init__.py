"""Optional helper classifiers for storage SDKs.

Dependency-free by default. Classifiers attempt optional imports and fall
back to the default classifier when dependencies are missing.
"""

from .azure import azure_classifier

__all__ = ["azure_classifier"]
