from __future__ import annotations

import json

import pytest

from fakes import FakeGateway, text_reply
from peptide_directory.ai.gateway import GatewayNotConfiguredError
from peptide_directory.catalog import DirectoryDatabase
from peptide_directory.content.translate import (
    ArticleTranslator,
    TranslationError,
    restore_heading_ids,
    target_languages,
)

GERMAN = {
    "title": "Sterile Rekonstitutionsprotokolle",
    "meta_title": "Peptide steril rekonstituieren: Laborprotokoll",
    "summary": "Wie man lyophilisierte Peptide steril mischt.",
    "content": [
        {"type": "heading", "id": "einfuehrung", "level": 2, "text": "Einführung"},
        {"type": "paragraph", "text": "Die richtige Rekonstitution ist entscheidend."},
        {"type": "heading", "id": "ablauf", "level": 2, "text": "Schritt-für-Schritt-Ablauf"},
    ],
    "tableOfContents": [
        {"id": "einfuehrung", "title": "Einführung", "level": 2},
        {"id": "ablauf", "title": "Ablauf", "level": 2},
    ],
}


def _article_id(db: DirectoryDatabase) -> int:
    return int(db.get_article("peptide-reconstitution-guide")["article_id"])


def test_target_languages() -> None:
    assert target_languages(translate_all=True) == ["de", "fr", "pl", "nl", "es"]
    assert target_languages("pl") == ["pl"]
    assert target_languages("xx") == []
    assert target_languages(None) == []


def test_restore_heading_ids_by_position() -> None:
    source = [
        {"type": "heading", "id": "intro"},
        {"type": "paragraph", "text": "p"},
        {"type": "heading", "id": "steps"},
    ]
    translated = [
        {"type": "heading", "id": "einleitung"},
        {"type": "paragraph", "text": "p"},
        {"type": "heading"},
        {"type": "heading", "id": "extra"},
    ]
    restored = restore_heading_ids(source, translated, block_type="heading")
    assert [b.get("id") for b in restored] == ["intro", None, "steps", "extra"]


def test_translate_single_language(seeded_db: DirectoryDatabase) -> None:
    gateway = FakeGateway(text_reply("```json\n" + json.dumps(GERMAN, ensure_ascii=False) + "\n```"))
    article_id = _article_id(seeded_db)
    result = ArticleTranslator(seeded_db, gateway).translate_article(article_id, "de")

    assert result == {"success": True, "total_languages": 1, "success_count": 1, "results": {"de": {"success": True}}}
    row = seeded_db.get_translation(article_id, "de")
    assert row["title"] == "Sterile Rekonstitutionsprotokolle"
    assert row["meta_title"] == "Peptide steril rekonstituieren: Laborprotokoll"
    assert row["is_auto_translated"] == 1
    content = json.loads(row["content"])
    assert [b["id"] for b in content if b["type"] == "heading"] == ["introduction", "procedure"]
    toc = json.loads(row["table_of_contents"])
    assert [entry["id"] for entry in toc] == ["introduction", "procedure"]

    sent = gateway.payloads[0]
    assert sent["temperature"] == 0.3
    assert "from English to German" in sent["messages"][0]["content"]


def test_translate_all_records_per_language_failures(seeded_db: DirectoryDatabase) -> None:
    gateway = FakeGateway(text_reply(json.dumps(GERMAN)), text_reply("Désolé, je ne peux pas."))
    result = ArticleTranslator(seeded_db, gateway).translate_article(_article_id(seeded_db), translate_all=True)

    assert result["success"] is True
    assert result["total_languages"] == 5
    assert result["success_count"] == 1
    assert result["results"]["de"] == {"success": True}
    assert result["results"]["fr"] == {"success": False, "error": "Could not extract JSON from response"}
    assert result["results"]["es"]["success"] is False


def test_translate_errors(seeded_db: DirectoryDatabase) -> None:
    translator = ArticleTranslator(seeded_db, FakeGateway())
    with pytest.raises(TranslationError) as missing:
        translator.translate_article(None, "de")
    assert missing.value.status_code == 400

    with pytest.raises(TranslationError) as not_found:
        translator.translate_article(9999, "de")
    assert not_found.value.status_code == 404

    with pytest.raises(TranslationError, match="No valid target language specified"):
        translator.translate_article(_article_id(seeded_db), "xx")

    with pytest.raises(GatewayNotConfiguredError):
        ArticleTranslator(seeded_db, FakeGateway(api_key=None)).translate_article(_article_id(seeded_db), "de")


def test_all_failures_report_unsuccessful(seeded_db: DirectoryDatabase) -> None:
    gateway = FakeGateway(text_reply("nope"))
    result = ArticleTranslator(seeded_db, gateway).translate_article(_article_id(seeded_db), "nl")
    assert result["success"] is False
    assert result["success_count"] == 0
