"""
Source Extraction Module
"""
from .extractor import SourceExtractor

__all__ = ["SourceExtractor"]
