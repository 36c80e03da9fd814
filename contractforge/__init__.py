"""contractforge: provider contract generation with immutable storage.

Merges provider data into contract templates, packages DOCX documents,
stores them write-once under timestamped keys with a tiered retrieval
fallback, and runs bulk generation and bulk template assignment with
per-item failure isolation.
"""

__version__ = "0.1.0"
__description__ = "Provider contract generation and immutable storage pipeline"

from contractforge.core.orchestrator import GenerationOrchestrator

__all__ = ["GenerationOrchestrator", "__version__"]
