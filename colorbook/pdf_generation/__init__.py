"""
PDF assembly for finished colouring books.
"""

from .artifacts import ArtifactStore
from .assembler import DocumentAssembler, GeneratedPage, PageKind, PageLayoutConfig, build_pages
from .vectorizer import LineArtVectorizer, VectorArt

__all__ = [
    "ArtifactStore",
    "DocumentAssembler",
    "GeneratedPage",
    "LineArtVectorizer",
    "PageKind",
    "PageLayoutConfig",
    "VectorArt",
    "build_pages",
]
