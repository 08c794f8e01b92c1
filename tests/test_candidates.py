from __future__ import annotations

import pytest

from bizsearch.candidates import (
    CandidateExtractor,
    Source,
    core_phrase,
    split_raw_to_parts,
    strip_brand_decorations,
)
from bizsearch.lexicon import Lexicon, SearchLexicon
from bizsearch.schemas import CompanyRecord


@pytest.fixture
def extractor(lexicon):
    return CandidateExtractor(lexicon)


# --------------------------------------------------------------------------- #
# Splitting
# --------------------------------------------------------------------------- #


class TestSplitting:
    def test_split_raw_to_parts(self):
        assert split_raw_to_parts("окна; двери, ворота / заборы • лестницы") == [
            "окна", "двери", "ворота", "заборы", "лестницы",
        ]

    def test_strip_brand_decorations(self):
        assert strip_brand_decorations("Молоко «Бурёнка» (2,5%)").split() == ["Молоко"]

    def test_core_phrase(self, lexicon):
        assert core_phrase("купить оптом молоко", lexicon) == "молоко"
        assert core_phrase("заказать ремонт обуви", lexicon) == "ремонт обуви"
        assert core_phrase("молоко", lexicon) == "молоко"


class TestConjunctions:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("ремонт и обслуживание холодильников", ["ремонт холодильников", "обслуживание холодильников"]),
            ("производство мебели и дверей", ["производство мебели", "производство дверей"]),
            ("окна и двери", ["окна", "двери"]),
            ("ремонт обуви", ["ремонт обуви"]),
            ("молоко", ["молоко"]),
        ],
    )
    def test_expand(self, extractor, raw, expected):
        assert extractor.expand_conjunctive_phrase(raw) == expected

    def test_three_word_left_borrows_head(self, extractor):
        assert extractor.expand_conjunctive_phrase("продажа строительных материалов и инструментов") == [
            "продажа строительных материалов",
            "продажа строительных инструментов",
        ]


# --------------------------------------------------------------------------- #
# Producers
# --------------------------------------------------------------------------- #


class TestProducers:
    def test_activity_phrases_window(self, extractor):
        phrases = extractor.extract_activity_phrases("Компания выполняет ремонт холодильников. История завода.")
        assert "ремонт холодильников" in phrases
        assert all("история" not in p for p in phrases)

    def test_repeated_head_needs_three_parts(self, extractor):
        assert extractor.extract_repeated_head_phrases("трубы стальные, трубы медные, трубки пвх") == [
            "трубы стальные", "трубы медные", "трубки пвх",
        ]
        assert extractor.extract_repeated_head_phrases("трубы стальные, краска") == []

    def test_product_list_in_food_context(self, extractor):
        text = "Выпускаем молочную продукцию (молоко, кефир и сметана, и т.д.) и детское питание."
        phrases = extractor.extract_product_list_phrases(text)
        assert phrases == ["молоко", "кефир", "сметана", "детское питание"]

    def test_synonyms(self, extractor):
        assert extractor.expand_synonyms("монтаж натяжных потолков") == ["установка натяжных потолков"]
        assert "обслуживание холодильников" in extractor.expand_synonyms("ремонт холодильников")


# --------------------------------------------------------------------------- #
# Safety filter
# --------------------------------------------------------------------------- #


class TestSafety:
    @pytest.mark.parametrize(
        "phrase, source, expected",
        [
            ("ремонт холодильников", Source.SERVICE, True),
            ("ремонт холодильников недорого", Source.SERVICE, False),
            ("ремонт холодильников 2020", Source.SERVICE, False),
            ("ремонт холодильников минск", Source.SERVICE, False),
            ("услуги", Source.SERVICE, False),
            ("продукция", Source.CATEGORY, False),
            ("купить продукты", Source.PRODUCT, False),
            ("история завода", Source.AUX_TEXT, False),
            ("один два три четыре пять шесть семь", Source.SERVICE, False),
        ],
    )
    def test_is_safe_phrase(self, extractor, phrase, source, expected):
        assert extractor.is_safe_phrase(phrase, source) is expected

    def test_context_city_blocked(self, extractor):
        assert not extractor.is_safe_phrase("ремонт гадюкино", Source.SERVICE, context_geo={"гадюкино"})

    def test_identity_blocked_only_for_aux_text(self, extractor):
        identity = {"каблучок"}
        assert not extractor.is_safe_phrase("ремонт каблучок", Source.AUX_TEXT, identity=identity)
        assert extractor.is_safe_phrase("ремонт каблучок", Source.SERVICE, identity=identity)


class TestExtract:
    def test_service_variants(self, extractor):
        record = CompanyRecord(source_id="x", services_list=[{"name": "Ремонт обуви"}])
        phrases = {c.phrase: c.source for c in extractor.extract(record)}
        assert phrases["ремонт обуви"] is Source.SERVICE
        assert "заказать ремонт обуви" in phrases
        assert "услуги ремонт обуви" in phrases

    def test_call_phrase_for_callback_services(self, extractor):
        record = CompanyRecord(source_id="x", services_list=[{"name": "Аварийный сантехник"}])
        assert "вызвать аварийный сантехник" in {c.phrase for c in extractor.extract(record)}

    def test_product_variants(self, extractor):
        record = CompanyRecord(source_id="x", products=[{"name": "Молоко"}])
        phrases = {c.phrase for c in extractor.extract(record)}
        assert {"молоко", "продажа молоко", "купить молоко", "купить оптом молоко"} <= phrases

    def test_aux_text_only_when_allowed(self, extractor):
        record = CompanyRecord(source_id="x", description="Компания выполняет ремонт холодильников.")
        assert not [c for c in extractor.extract(record) if c.source is Source.AUX_TEXT]
        aux = [c.phrase for c in extractor.extract(record, allow_aux_text=True) if c.source is Source.AUX_TEXT]
        assert "ремонт холодильников" in aux

    def test_taxonomy_blocklist(self, extractor):
        record = CompanyRecord(
            source_id="x",
            rubrics=[{"slug": "t/l", "name": "Транспорт", "category_slug": "t"}],
            categories=[{"slug": "t", "name": "Грузоперевозки"}],
        )
        phrases = {c.phrase: c.source for c in extractor.extract(record)}
        assert "транспорт" not in phrases
        assert phrases["грузоперевозки"] is Source.CATEGORY

    def test_malformed_record_yields_nothing(self, extractor):
        record = CompanyRecord.model_validate({"source_id": "x", "services_list": "not a list", "rubrics": [1, None]})
        assert extractor.extract(record) == []


def test_fixture_lexicon_drives_extraction():
    lexicon = Lexicon(
        stop_words=frozenset({"и"}),
        activity_trigger_stems=["чин"],
        transactional_prefixes=["заказать"],
        search=SearchLexicon(),
    )
    extractor = CandidateExtractor(lexicon)
    assert extractor.expand_conjunctive_phrase("чинить и паять утюги") == ["чинить утюги", "паять утюги"]
