"""Tests for text normalisation and similarity scoring."""

from __future__ import annotations

from src.equipment_rag.llm_json import Parsed, Unparsed, parse_json_array, parse_json_object
from src.equipment_rag.matching import (
    bigram_similarity,
    detect_language,
    levenshtein_similarity,
    normalize_text,
    word_similarity,
)


class TestNormalizeText:
    def test_strips_accents_case_and_spacing(self):
        assert normalize_text("  Pompe   HYDRAULIQUE  Électrique ") == "pompe hydraulique electrique"

    def test_empty(self):
        assert normalize_text("") == ""


class TestDetectLanguage:
    def test_arabic(self):
        assert detect_language("المضخة") == "ar"

    def test_english(self):
        assert detect_language("mixer 2") == "en"

    def test_french_default(self):
        assert detect_language("malaxeur à béton") == "fr"


class TestLevenshteinSimilarity:
    def test_identical_is_one(self):
        assert levenshtein_similarity("malaxeur", "malaxeur") == 1.0

    def test_strictly_decreases_with_edits(self):
        base = "transbordeur"
        one_edit = "transbordeux"
        two_edits = "transborxeux"
        assert 1.0 > levenshtein_similarity(base, one_edit) > levenshtein_similarity(base, two_edits)

    def test_empty_strings(self):
        assert levenshtein_similarity("", "") == 1.0


class TestWordSimilarity:
    def test_containment_counts_fully(self):
        assert word_similarity("le malaxeur principal chauffe", "malaxeur principal") == 1.0

    def test_typo_scores_partially(self):
        score = word_similarity("le malaxuer fuit", "malaxeur")
        assert 0.5 < score < 1.0

    def test_short_words_ignored(self):
        assert word_similarity("de la", "de") == 0.0

    def test_empty_inputs(self):
        assert word_similarity("", "malaxeur") == 0.0


class TestBigramSimilarity:
    def test_identical(self):
        assert bigram_similarity("pompe", "pompe") == 1.0

    def test_disjoint(self):
        assert bigram_similarity("abc", "xyz") == 0.0

    def test_partial_overlap(self):
        assert 0.0 < bigram_similarity("compresseur", "compresseurs") < 1.0


class TestJsonReplies:
    def test_object_inside_fence_and_prose(self):
        reply = 'Voici le résultat:\n```json\n{"type": "manual", "confidence": 0.9}\n```'
        result = parse_json_object(reply)
        assert isinstance(result, Parsed)
        assert result.data["type"] == "manual"

    def test_object_invalid_json(self):
        result = parse_json_object("{type: manual}")
        assert isinstance(result, Unparsed)
        assert "invalid JSON" in result.reason

    def test_object_missing(self):
        result = parse_json_object("I cannot help with that.")
        assert isinstance(result, Unparsed)
        assert result.raw_text == "I cannot help with that."

    def test_empty_reply(self):
        assert isinstance(parse_json_object(""), Unparsed)

    def test_array(self):
        result = parse_json_array('Types: ["maintenance", "parts"]')
        assert isinstance(result, Parsed)
        assert result.data == ["maintenance", "parts"]

    def test_array_not_object(self):
        assert isinstance(parse_json_object('["a"]'), Unparsed)
