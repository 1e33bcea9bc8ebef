"""
ColorBook package exposing page generation, order tracking and PDF assembly.
"""

from .pdf_generation import ArtifactStore, DocumentAssembler, LineArtVectorizer
from .pipeline import (
    FileOrderStore,
    GenerationOrchestrator,
    GenerationRegistry,
    InMemoryOrderStore,
    PromptFailureTracker,
    PromptSelector,
)

__all__ = [
    "ArtifactStore",
    "DocumentAssembler",
    "FileOrderStore",
    "GenerationOrchestrator",
    "GenerationRegistry",
    "InMemoryOrderStore",
    "LineArtVectorizer",
    "PromptFailureTracker",
    "PromptSelector",
]
