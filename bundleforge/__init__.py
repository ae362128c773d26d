"""bundleforge: deterministic mutation of versioned manifest bundles.

Resolves a source archive and an optional configuration or localization
document, applies exactly one transform (configure, localize, strategic
merge patch, or pass-through), and stores the re-archived result in a
content-addressable cache under a deterministic identity.
"""

__version__ = "0.1.0"
__description__ = "Deterministic, cacheable mutation of versioned manifest bundles"

from bundleforge.core.cache import FilesystemCache
from bundleforge.core.orchestrator import MutationPipeline
from bundleforge.core.resolver import DataResolver

__all__ = ["DataResolver", "FilesystemCache", "MutationPipeline", "__version__"]
