# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
from keycheck.extractor import DEFAULT_LARGE_FILE_THRESHOLD, Extractor
from keycheck.extractors.lexical import LexicalExtractor
from keycheck.extractors.structural import StructuralExtractor


def build_extractor(large_file_threshold: int = DEFAULT_LARGE_FILE_THRESHOLD) -> Extractor:
    """Return the default structural-with-lexical-fallback extractor."""
    return Extractor(
        structural=StructuralExtractor(),
        lexical=LexicalExtractor(),
        large_file_threshold=large_file_threshold,
    )


__all__ = ["LexicalExtractor", "StructuralExtractor", "build_extractor"]
