"""Article generation and translation.

Modules:
- articles: drafting, scheduled publishing, meta titles, vendor blurbs
- translate: per-language article translation
"""

from .articles import ArticleGenerationError, ArticleService, generate_vendor_description, sync_headings_with_toc
from .translate import ArticleTranslator, TranslationError

__all__ = [
    "ArticleGenerationError",
    "ArticleService",
    "ArticleTranslator",
    "TranslationError",
    "generate_vendor_description",
    "sync_headings_with_toc",
]
