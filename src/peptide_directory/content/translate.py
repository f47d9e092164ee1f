from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from ..ai.gateway import AIGatewayClient, GatewayError, GatewayNotConfiguredError
from ..catalog.db import DirectoryDatabase
from ..domain.constants import LANGUAGE_NAMES, SOURCE_LANGUAGE, SUPPORTED_LANGUAGES
from ..domain.models import Article
from ..logging import get_logger

LOG = get_logger("content-translate")

TRANSLATION_TEMPERATURE = 0.3


class TranslationError(Exception):
    def __init__(self, message: str, *, status_code: int = 500) -> None:
        super().__init__(message)
        self.status_code = status_code


def target_languages(target_language: Optional[str] = None, translate_all: bool = False) -> List[str]:
    if translate_all:
        return [lang for lang in SUPPORTED_LANGUAGES if lang != SOURCE_LANGUAGE]
    if target_language and target_language in SUPPORTED_LANGUAGES:
        return [target_language]
    return []


def translation_prompt(article: Article, language: str) -> str:
    name = LANGUAGE_NAMES[language]
    source = {
        "title": article.title,
        "summary": article.summary or "",
        "content": article.content,
        "tableOfContents": article.table_of_contents,
    }
    return f"""
You are a professional translator specializing in scientific and medical content. Translate the following article content from English to {name}.

CRITICAL RULES:
1. Maintain scientific accuracy and terminology
2. Keep peptide names, molecular formulas, and technical identifiers UNCHANGED (e.g., "BPC-157", "GH", "HPLC")
3. Preserve all formatting, structure, and JSON keys
4. Generate an SEO-optimized meta_title (50-60 characters) that includes the main keyword in {name}
5. The meta_title should be different from the title - optimized for search results
6. Keep all "id" fields exactly as they are - do not translate them
7. Return ONLY valid JSON, no markdown formatting

INPUT JSON:
{json.dumps(source, ensure_ascii=False, indent=2)}

OUTPUT FORMAT (JSON only):
{{
  "title": "translated title",
  "meta_title": "SEO optimized title 50-60 chars",
  "summary": "translated summary",
  "content": [...translated content blocks with same structure...],
  "tableOfContents": [...translated ToC with same IDs...]
}}
""".strip()


def restore_heading_ids(
    source: List[Dict[str, Any]],
    translated: List[Dict[str, Any]],
    *,
    block_type: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Copy ids from source entries onto translated entries at the same position.

    With block_type set, only entries of that type are paired (headings inside
    a content list); otherwise every entry is (a table of contents).
    """
    def eligible(entry: Dict[str, Any]) -> bool:
        return block_type is None or entry.get("type") == block_type

    source_ids = [entry.get("id") for entry in source if eligible(entry)]
    out: List[Dict[str, Any]] = []
    position = 0
    for entry in translated:
        if isinstance(entry, dict) and eligible(entry):
            if position < len(source_ids) and source_ids[position]:
                entry = {**entry, "id": source_ids[position]}
            position += 1
        out.append(entry)
    return out


class ArticleTranslator:
    def __init__(self, db: DirectoryDatabase, gateway: AIGatewayClient) -> None:
        self.db = db
        self.gateway = gateway

    def _translate_one(self, article: Article, language: str) -> None:
        LOG.info("Translating article %s to %s...", article.id, LANGUAGE_NAMES[language])
        data = self.gateway.json_request(
            [{"role": "user", "content": translation_prompt(article, language)}],
            temperature=TRANSLATION_TEMPERATURE,
        )
        if not isinstance(data, dict) or not data.get("title"):
            raise TranslationError("Could not extract JSON from response")

        content = data.get("content")
        toc = data.get("tableOfContents")
        content = restore_heading_ids(article.content, content, block_type="heading") if isinstance(content, list) else []
        toc = restore_heading_ids(article.table_of_contents, toc) if isinstance(toc, list) else []
        self.db.upsert_translation(
            {
                "article_id": int(article.id),
                "language": language,
                "title": data["title"],
                "meta_title": data.get("meta_title"),
                "summary": data.get("summary"),
                "content": content,
                "table_of_contents": toc,
                "is_auto_translated": True,
            }
        )
        LOG.info("Successfully translated to %s", LANGUAGE_NAMES[language])

    def translate_article(
        self,
        article_id: Optional[int],
        target_language: Optional[str] = None,
        translate_all: bool = False,
    ) -> Dict[str, Any]:
        if not article_id:
            raise TranslationError("articleId is required", status_code=400)
        if not self.gateway.configured:
            raise GatewayNotConfiguredError()
        row = self.db.get_article_by_id(int(article_id))
        if row is None:
            raise TranslationError("Article not found", status_code=404)
        languages = target_languages(target_language, translate_all)
        if not languages:
            raise TranslationError("No valid target language specified", status_code=400)

        article = Article.from_row(row)
        results: Dict[str, Dict[str, Any]] = {}
        for language in languages:
            try:
                self._translate_one(article, language)
            except (GatewayError, TranslationError) as exc:
                LOG.error("Translation error for %s: %s", language, exc)
                results[language] = {"success": False, "error": str(exc)}
                continue
            except Exception as exc:
                LOG.exception("Translation error for %s", language)
                results[language] = {"success": False, "error": str(exc) or "Unknown error"}
                continue
            results[language] = {"success": True}

        success_count = sum(1 for r in results.values() if r["success"])
        return {
            "success": success_count > 0,
            "total_languages": len(languages),
            "success_count": success_count,
            "results": results,
        }
