from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..ai.gateway import AIGatewayClient, GatewayError, GatewayNotConfiguredError, ToolArgumentsError, function_tool
from ..catalog.db import DirectoryDatabase
from ..domain.constants import DEFAULT_ARTICLE_CATEGORIES, LANGUAGE_NAMES, SOURCE_LANGUAGE, SUPPORTED_LANGUAGES
from ..domain.models import ArticleSchedule, Product
from ..logging import get_logger

LOG = get_logger("content-articles")

WORD_COUNTS: Dict[str, str] = {
    "short": "800-1000",
    "standard": "1200-1500",
    "long": "2000-2500",
}
DEFAULT_TARGET_LENGTH = "standard"

AUTO_AUTHOR_NAME = "AI Research Desk"
AUTO_AUTHOR_ROLE = "Auto-Generated"
RECENT_TITLES_LIMIT = 20
SLUG_MAX_LENGTH = 100

META_STATUS_SUCCESS = "success"
META_STATUS_EXISTS = "exists"
META_STATUS_ERROR = "error"
META_STATUS_NO_TRANSLATION = "no_translation"


class ArticleGenerationError(Exception):
    def __init__(self, message: str, *, status_code: int = 500) -> None:
        super().__init__(message)
        self.status_code = status_code


# ---------- tool schema & prompts ----------
GENERATE_ARTICLE_TOOL = function_tool(
    "generate_seo_article",
    "Generate a complete SEO-optimized article with structured content and automatic category/peptide matching",
    {
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "SEO-optimized article title including the focus keyword (max 70 chars)"},
            "summary": {"type": "string", "description": "Meta description for SEO (150-160 characters)"},
            "category": {"type": "string", "description": 'Selected category value (kebab-case, e.g., "safety", "handling")'},
            "categoryLabel": {"type": "string", "description": 'Human-readable category label (e.g., "Safety", "Handling")'},
            "isNewCategory": {"type": "boolean", "description": "True if this is a NEW category not in the existing list"},
            "tableOfContents": {
                "type": "array",
                "description": "Table of contents entries",
                "items": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string", "description": "Unique section ID (kebab-case)"},
                        "title": {"type": "string", "description": "Section title"},
                        "level": {"type": "number", "description": "Heading level (2 or 3)"},
                    },
                    "required": ["id", "title", "level"],
                },
            },
            "content": {
                "type": "array",
                "description": "Article content blocks",
                "items": {
                    "type": "object",
                    "properties": {
                        "type": {
                            "type": "string",
                            "enum": ["heading", "paragraph", "list", "callout"],
                            "description": "Type of content block",
                        },
                        "id": {"type": "string", "description": "Section ID for headings (matches TOC)"},
                        "level": {"type": "number", "description": "Heading level (2 or 3) for headings"},
                        "text": {"type": "string", "description": "Text content for paragraphs, headings, or callouts"},
                        "items": {"type": "array", "items": {"type": "string"}, "description": "List items for list type"},
                        "variant": {"type": "string", "enum": ["info", "warning", "note"], "description": "Callout variant type"},
                    },
                    "required": ["type"],
                },
            },
            "readTime": {"type": "number", "description": "Estimated reading time in minutes"},
            "relatedPeptides": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of related peptide names (display names) mentioned in the article",
            },
            "matchedPeptideSlugs": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of matched peptide slugs from our database for internal linking",
            },
        },
        "required": [
            "title",
            "summary",
            "category",
            "categoryLabel",
            "isNewCategory",
            "tableOfContents",
            "content",
            "readTime",
            "relatedPeptides",
            "matchedPeptideSlugs",
        ],
    },
)


def _article_system_prompt(category_list: str, peptide_list: str, target_words: str) -> str:
    return f"""
You are an expert SEO content writer for a peptide research information website.
Write comprehensive, scientifically accurate educational articles optimized for search engines.

SEO Requirements:
- Include the focus keyword naturally in the title, first paragraph, and 2-3 headings
- Use semantic variations and related terms throughout (1-2% keyword density)
- Write for researchers and scientists (professional but accessible tone)
- Structure content with clear H2/H3 hierarchy for readability
- Include actionable information, bullet lists, and informative callouts
- Keep paragraphs concise (2-4 sentences each)

Content Guidelines:
- 100% original, scientifically accurate, educational (not promotional)
- "Research use only" context
- Address common questions about the topic

Category Selection:
- Available categories: {category_list}
- Choose the MOST appropriate category for the article content
- If NO existing category fits well, you may suggest a NEW category (use kebab-case for value)

Peptide Matching:
- Available peptides in our database: {peptide_list}
- Identify any peptides mentioned in your content and match them to our database
- Use exact slug values when matching
- Only match peptides that are actually relevant to the content

Target length: {target_words} words
""".strip()


def _article_user_prompt(keyword: str, additional_context: Optional[str]) -> str:
    extra = f"Additional context: {additional_context}\n" if additional_context else ""
    return (
        f'Generate a complete SEO-optimized article about: "{keyword}"\n'
        f"{extra}\n"
        "Create a comprehensive article with:\n"
        "1. An engaging, SEO-optimized title including the keyword\n"
        "2. A meta description (summary) of 150-160 characters\n"
        "3. Select the best category from available options (or suggest a new one if needed)\n"
        "4. Well-structured content with headings, paragraphs, lists, and callouts\n"
        "5. Identify any peptides mentioned and match them to our product database"
    )


def _topic_prompt(existing_titles: List[str], product_list: str, additional_context: Optional[str]) -> str:
    extra = f"\nAdditional context: {additional_context}\n" if additional_context else ""
    titles = "\n".join(existing_titles)
    return f"""
You are an SEO expert for a research peptide information website.

Existing articles (DO NOT DUPLICATE these topics):
{titles}

Available peptides in our database:
{product_list}

Generate a NEW, unique SEO-valuable topic for a research peptide article. The topic should:
1. NOT duplicate any existing article topics
2. Target relevant keywords researchers search for
3. Be educational and scientific (not promotional)
4. Focus on research applications, mechanisms, or safety
5. Be specific enough to provide value
{extra}
Return ONLY a JSON object with these fields:
{{
  "keyword": "main SEO keyword/keyphrase",
  "title": "suggested article title",
  "reasoning": "why this topic is SEO-valuable"
}}
""".strip()


def _meta_title_system_prompt(language: str) -> str:
    name = LANGUAGE_NAMES.get(language, LANGUAGE_NAMES[SOURCE_LANGUAGE])
    return f"""
You are an SEO expert specializing in scientific research content. Generate an optimized meta title for an article.

Rules:
- MUST be 50-60 characters (including spaces)
- Include the main keyword naturally
- Make it compelling and click-worthy
- For scientific peptide research content, maintain authority and credibility
- Write in {name}.
- Return ONLY the meta title, nothing else - no quotes, no explanation
""".strip()


# ---------- helpers ----------
def slugify(title: str) -> str:
    slug = re.sub(r"\s+", "-", (title or "").lower().strip())
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    return slug[:SLUG_MAX_LENGTH]


def strip_quotes(text: str) -> str:
    return re.sub(r"^[\"']|[\"']$", "", (text or "").strip()).strip()


def sync_headings_with_toc(
    content: List[Dict[str, Any]],
    toc: List[Dict[str, Any]],
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Give id-less headings the id of the TOC entry with the same title, then rebuild the TOC.

    The given TOC is kept when no heading ends up with an id.
    """
    by_title: Dict[str, str] = {}
    for entry in toc or []:
        title = str(entry.get("title") or "").lower().strip()
        if title and entry.get("id") and title not in by_title:
            by_title[title] = entry["id"]

    synced: List[Dict[str, Any]] = []
    for block in content or []:
        if block.get("type") == "heading" and block.get("text") and not block.get("id"):
            toc_id = by_title.get(str(block["text"]).lower().strip())
            if toc_id:
                block = {**block, "id": toc_id}
        synced.append(block)

    rebuilt = [
        {"id": b["id"], "title": b.get("text") or "", "level": b.get("level") or 2}
        for b in synced
        if b.get("type") == "heading" and b.get("id")
    ]
    return synced, (rebuilt or list(toc or []))


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        LOG.warning("Unparseable schedule timestamp: %r", value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def next_run_after(now: datetime, frequency: str, time_of_day: str) -> datetime:
    """now + 1 day (daily) or + 7 days (weekly), at time_of_day."""
    days = 1 if frequency == "daily" else 7
    try:
        hours, minutes = (int(part) for part in (time_of_day or "09:00").split(":")[:2])
    except ValueError:
        LOG.warning("Invalid time_of_day %r; using 09:00", time_of_day)
        hours, minutes = 9, 0
    return (now + timedelta(days=days)).replace(hour=hours, minute=minutes, second=0, microsecond=0)


# ---------- service ----------
class ArticleService:
    """Model-backed article generation and scheduled publishing."""

    def __init__(self, db: DirectoryDatabase, gateway: AIGatewayClient) -> None:
        self.db = db
        self.gateway = gateway

    def _require_gateway(self) -> None:
        if not self.gateway.configured:
            raise GatewayNotConfiguredError()

    def _categories(self) -> List[Dict[str, str]]:
        rows = self.db.list_article_categories()
        if rows:
            return [{"value": r["value"], "label": r["label"]} for r in rows]
        return [{"value": v, "label": label} for v, label in DEFAULT_ARTICLE_CATEGORIES]

    def _products(self) -> List[Product]:
        return [Product.from_row(r) for r in self.db.list_products()]

    def generate_article(
        self,
        keyword: Optional[str],
        target_length: Optional[str] = None,
        additional_context: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Draft an article for keyword; the draft is returned, not stored."""
        if not keyword or not str(keyword).strip():
            raise ArticleGenerationError("Keyword is required", status_code=400)
        self._require_gateway()

        categories = self._categories()
        products = self._products()
        target_words = WORD_COUNTS.get(target_length or "", WORD_COUNTS[DEFAULT_TARGET_LENGTH])
        category_list = ", ".join(f'"{c["value"]}" ({c["label"]})' for c in categories)
        peptide_list = ", ".join(f'"{p.name}" (slug: {p.slug})' for p in products)

        messages = [
            {"role": "system", "content": _article_system_prompt(category_list, peptide_list, target_words)},
            {"role": "user", "content": _article_user_prompt(keyword, additional_context)},
        ]
        LOG.info("Generating article for keyword %r (%s words)", keyword, target_words)
        try:
            article = self.gateway.tool_call(messages, GENERATE_ARTICLE_TOOL)
        except ToolArgumentsError as exc:
            raise ArticleGenerationError("Invalid AI response format") from exc
        if not article or not article.get("title"):
            raise ArticleGenerationError("Invalid AI response format")

        category = article.get("category") or ""
        category_label = article.get("categoryLabel") or ""
        is_new_category = bool(article.get("isNewCategory"))
        if is_new_category and category and category_label:
            if self.db.insert_article_category(category, category_label):
                LOG.info("Created new category %s (%s)", category, category_label)
            else:
                LOG.info("Category %s already exists", category)

        known_slugs = {p.slug for p in products}
        matched = [s for s in article.get("matchedPeptideSlugs") or [] if s in known_slugs]

        return {
            "title": article["title"],
            "summary": article.get("summary") or "",
            "slug": slugify(article["title"]),
            "category": category,
            "category_label": category_label,
            "is_new_category": is_new_category,
            "table_of_contents": article.get("tableOfContents") or [],
            "content": article.get("content") or [],
            "read_time": article.get("readTime"),
            "related_peptides": article.get("relatedPeptides") or [],
            "matched_peptide_slugs": matched,
        }

    def _generate_topic(self, additional_context: Optional[str]) -> Dict[str, Any]:
        titles = [t.lower() for t in self.db.recent_article_titles(RECENT_TITLES_LIMIT)]
        product_list = ", ".join(f"{p.name} ({p.category})" for p in self._products()[:30])
        messages = [{"role": "user", "content": _topic_prompt(titles, product_list, additional_context)}]
        LOG.info("Generating topic with AI...")
        topic = self.gateway.json_request(messages, response_format={"type": "json_object"})
        if not isinstance(topic, dict) or not topic.get("keyword"):
            raise ArticleGenerationError("Invalid topic response format")
        LOG.info("Generated topic: %s", topic)
        return topic

    def auto_generate(self, force: bool = False, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Publish one article when the active schedule is due (or when forced)."""
        self._require_gateway()
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        row = self.db.active_schedule()
        schedule = ArticleSchedule.from_row(row) if row else None
        LOG.info("Auto-generate triggered. Force: %s", force)
        if schedule is None and not force:
            LOG.info("No active schedule found and not force-generating")
            return {"message": "No active schedule", "generated": False}

        if schedule is not None and not force:
            next_run = _parse_timestamp(schedule.next_run_at)
            if next_run and now < next_run:
                LOG.info("Not time yet. Next run: %s", next_run.isoformat())
                return {"message": "Not scheduled yet", "next_run": next_run.isoformat(), "generated": False}

        context = schedule.additional_context if schedule else None
        topic = self._generate_topic(context)
        article = self.generate_article(
            topic["keyword"],
            schedule.target_length if schedule else DEFAULT_TARGET_LENGTH,
            context,
        )
        content, toc = sync_headings_with_toc(article["content"], article["table_of_contents"])

        self.db.insert_article(
            {
                "slug": article["slug"],
                "title": article["title"],
                "summary": article["summary"],
                "category": article["category"],
                "category_label": article["category_label"],
                "read_time": article["read_time"],
                "table_of_contents": toc,
                "content": content,
                "related_peptides": article["related_peptides"],
                "published_date": now.isoformat(),
                "author_name": AUTO_AUTHOR_NAME,
                "author_role": AUTO_AUTHOR_ROLE,
            }
        )
        LOG.info("Article saved: %s", article["title"])

        if schedule is not None:
            next_run = next_run_after(now, schedule.frequency, schedule.time_of_day)
            self.db.update_schedule_run(schedule.id, now.isoformat(), next_run.isoformat())

        return {
            "success": True,
            "generated": True,
            "article": {"title": article["title"], "slug": article["slug"], "category": article["category"]},
            "topic": topic,
        }

    def _meta_title(self, title: str, summary: str, language: str) -> Optional[str]:
        messages = [
            {"role": "system", "content": _meta_title_system_prompt(language)},
            {
                "role": "user",
                "content": (
                    "Generate an SEO meta title for this article:\n\n"
                    f"Title: {title}\nSummary: {summary}\n\n"
                    "Remember: 50-60 characters maximum, include main topic/keyword, make it compelling."
                ),
            },
        ]
        try:
            text = self.gateway.text(messages, temperature=0.7, max_tokens=100)
        except GatewayError as exc:
            LOG.error("Meta title request failed (%s): %s", language, exc)
            return None
        cleaned = strip_quotes(text)
        if not cleaned:
            LOG.error("No content in AI response for %s meta title", language)
            return None
        LOG.info("Generated meta title (%s): %s (%d chars)", language, cleaned, len(cleaned))
        return cleaned

    def generate_meta_titles(self) -> Dict[str, Any]:
        """Fill missing meta titles for every article and its existing translations."""
        self._require_gateway()
        articles = self.db.list_articles()
        LOG.info("Found %d articles to process", len(articles))
        results: List[Dict[str, Any]] = []

        def record(article_id: int, language: str, meta_title: str, status: str) -> None:
            results.append({"article_id": article_id, "language": language, "meta_title": meta_title, "status": status})

        for article in articles:
            article_id = article["article_id"]
            if article["meta_title"]:
                record(article_id, SOURCE_LANGUAGE, article["meta_title"], META_STATUS_EXISTS)
            else:
                meta = self._meta_title(article["title"], article["summary"] or "", SOURCE_LANGUAGE)
                if meta:
                    self.db.update_article_meta_title(article_id, meta)
                    record(article_id, SOURCE_LANGUAGE, meta, META_STATUS_SUCCESS)
                else:
                    record(article_id, SOURCE_LANGUAGE, "", META_STATUS_ERROR)

            translations = {t["language"]: t for t in self.db.translations_for_article(article_id)}
            for language in SUPPORTED_LANGUAGES:
                if language == SOURCE_LANGUAGE:
                    continue
                existing = translations.get(language)
                if existing is None:
                    record(article_id, language, "", META_STATUS_NO_TRANSLATION)
                    continue
                if existing["meta_title"]:
                    record(article_id, language, existing["meta_title"], META_STATUS_EXISTS)
                    continue
                meta = self._meta_title(
                    existing["title"] or article["title"],
                    existing["summary"] or article["summary"] or "",
                    language,
                )
                if meta:
                    self.db.update_translation_meta_title(article_id, language, meta)
                    record(article_id, language, meta, META_STATUS_SUCCESS)
                else:
                    record(article_id, language, "", META_STATUS_ERROR)

        summary = {
            "total": len(results),
            "success": sum(1 for r in results if r["status"] == META_STATUS_SUCCESS),
            "exists": sum(1 for r in results if r["status"] == META_STATUS_EXISTS),
            "errors": sum(1 for r in results if r["status"] == META_STATUS_ERROR),
            "no_translation": sum(1 for r in results if r["status"] == META_STATUS_NO_TRANSLATION),
        }
        LOG.info("Generation complete: %s", summary)
        return {"success": True, "results": results, "summary": summary}


def generate_vendor_description(
    gateway: AIGatewayClient,
    vendor_name: Optional[str],
    region: Optional[str] = None,
    website: Optional[str] = None,
) -> str:
    """Short directory blurb for a vendor."""
    if not vendor_name:
        raise ArticleGenerationError("Vendor name is required", status_code=400)
    if not gateway.configured:
        raise GatewayNotConfiguredError()

    lines = [
        f'Write a professional, concise description (2-3 sentences, max 150 words) for a peptide research vendor called "{vendor_name}".',
    ]
    if region:
        lines.append(f"They are based in the {region} region.")
    if website:
        lines.append(f"Their website is {website}.")
    lines.append(
        "\nThe description should:\n"
        "- Sound professional and trustworthy\n"
        "- Mention their focus on research-grade peptides\n"
        "- Highlight quality assurance and customer service\n"
        "- Be suitable for a vendor directory listing\n\n"
        "Only return the description text, no quotes or additional formatting."
    )
    messages = [
        {
            "role": "system",
            "content": "You are a professional copywriter specializing in scientific and research industry content. Write clear, professional descriptions.",
        },
        {"role": "user", "content": "\n".join(lines)},
    ]
    description = strip_quotes(gateway.text(messages))
    if not description:
        raise ArticleGenerationError("No description generated")
    return description
