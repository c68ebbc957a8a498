"""Tests for deduplicator functionality."""

import pytest
from datetime import date

from grants_ingest.core.deduplicator import (
    DedupCandidate,
    DedupClass,
    Deduplicator,
    MatchType,
    calculate_record_similarity,
    calculate_similarity,
    fingerprint_grant,
    generate_content_hash,
    generate_fingerprint,
    jaccard_similarity,
    levenshtein_similarity,
    source_key,
)
from grants_ingest.core.models import NormalizedGrant


class TestGenerateFingerprint:
    """Tests for generate_fingerprint function."""

    def test_consistent(self):
        """Test that same inputs produce the same fingerprint."""
        fp1 = generate_fingerprint("Rural Energy Grant", "USDA", 1000, 5000, date(2025, 9, 30))
        fp2 = generate_fingerprint("Rural Energy Grant", "USDA", 1000, 5000, date(2025, 9, 30))

        assert fp1 == fp2
        assert len(fp1) == 32

    def test_ignores_case_and_punctuation(self):
        """Test that title/sponsor normalization strips case and symbols."""
        fp1 = generate_fingerprint("Rural Energy Grant!", "U.S.D.A.")
        fp2 = generate_fingerprint("rural energy grant", "usda")

        assert fp1 == fp2

    def test_amount_and_deadline_matter(self):
        """Test that amounts and deadline change the fingerprint."""
        base = generate_fingerprint("Grant", "Agency", 1000, 5000, date(2025, 9, 30))

        assert generate_fingerprint("Grant", "Agency", 1000, 6000, date(2025, 9, 30)) != base
        assert generate_fingerprint("Grant", "Agency", 1000, 5000, date(2025, 10, 1)) != base

    def test_integer_amount_formatting(self):
        """Test that 5000 and 5000.0 fingerprint identically."""
        assert generate_fingerprint("G", "A", 5000) == generate_fingerprint("G", "A", 5000.0)

    def test_title_truncated(self):
        """Test that only the first 50 normalized title chars count."""
        prefix = "a" * 50
        assert generate_fingerprint(prefix + "xyz", "A") == generate_fingerprint(prefix + "123", "A")


class TestContentHash:
    """Tests for generate_content_hash function."""

    def test_consistent(self):
        """Test that same parts produce the same hash."""
        assert generate_content_hash("a", "b") == generate_content_hash("a", "b")

    def test_none_parts(self):
        """Test that None parts count as empty strings."""
        assert generate_content_hash("a", None) == generate_content_hash("a")


class TestSimilarity:
    """Tests for similarity helpers."""

    def test_levenshtein(self):
        """Test edit-distance similarity bounds."""
        assert levenshtein_similarity("grant", "grant") == 1.0
        assert levenshtein_similarity("grant", "") == 0.0
        assert levenshtein_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)

    def test_jaccard(self):
        """Test word-set similarity ignores short words."""
        assert jaccard_similarity("rural energy program", "rural energy program") == 1.0
        assert jaccard_similarity("rural energy", "urban housing") == 0.0
        assert jaccard_similarity("", "") == 1.0

    def test_calculate_similarity_weights(self):
        """Test that identical records with the same deadline score 1.0."""
        a = DedupCandidate("x:1", "Rural Energy Grant", "USDA", "Solar for farms", date(2025, 9, 30))
        b = DedupCandidate("y:2", "Rural Energy Grant", "USDA", "Solar for farms", date(2025, 9, 30))
        c = DedupCandidate("y:3", "Rural Energy Grant", "USDA", "Solar for farms", date(2025, 10, 1))

        assert calculate_similarity(a, b) == pytest.approx(1.0)
        assert calculate_similarity(a, c) == pytest.approx(0.9)


class TestDeduplicator:
    """Tests for Deduplicator class."""

    def test_new_grant(self, make_grant):
        """Test that unknown grants are classified new."""
        dedup = Deduplicator()
        result = dedup.check(make_grant())

        assert result.classification == DedupClass.NEW
        assert result.is_duplicate is False

    def test_exact_key_is_update(self, make_grant):
        """Test that a known source key is an update, even with changed content."""
        grant = make_grant()
        dedup = Deduplicator(existing_keys=[source_key("grants_gov", "100")])

        result = dedup.check(make_grant(title="Renamed program"))

        assert result.classification == DedupClass.UPDATE
        assert result.match_type == MatchType.EXACT
        assert result.existing_key == "grants_gov:100"
        assert grant.key == ("grants_gov", "100")

    def test_cross_source_fingerprint_duplicate(self, make_grant):
        """Test that the same grant from another source is a duplicate at 0.95."""
        first = make_grant(source_name="grants_gov", source_id="100")
        second = make_grant(
            source_name="sbir_gov",
            source_id="S-1",
            apply_url="https://www.sbir.gov/node/1",
        )
        dedup = Deduplicator()

        assert dedup.classify(first).classification == DedupClass.NEW
        result = dedup.classify(second)

        assert result.classification == DedupClass.DUPLICATE
        assert result.match_type == MatchType.FINGERPRINT
        assert result.confidence == 0.95
        assert result.existing_key == "grants_gov:100"
        assert fingerprint_grant(first) == fingerprint_grant(second)

    def test_classify_does_not_index_duplicates(self, make_grant):
        """Test that duplicates are not added to the index."""
        dedup = Deduplicator()
        dedup.classify(make_grant())
        dedup.classify(make_grant(source_name="other", source_id="2"))

        assert len(dedup) == 1

    def test_fuzzy_disabled_by_default(self, make_grant):
        """Test that near-identical grants are new without fuzzy matching."""
        dedup = Deduplicator()
        dedup.add(make_grant())

        result = dedup.check(make_grant(source_name="other", source_id="2", title="Small Business Innovation Grants"))

        assert result.classification == DedupClass.NEW

    def test_fuzzy_match(self, make_grant):
        """Test that the fuzzy tier catches near-identical titles."""
        dedup = Deduplicator(fuzzy_enabled=True)
        dedup.add(make_grant())

        other = make_grant(source_name="other", source_id="2", title="Small Business Innovation Grants")
        result = dedup.check(other)

        assert result.classification == DedupClass.DUPLICATE
        assert result.match_type == MatchType.FUZZY
        assert result.confidence >= 0.85

    def test_fuzzy_below_threshold(self, make_grant):
        """Test that different grants stay new with fuzzy matching on."""
        dedup = Deduplicator(fuzzy_enabled=True)
        dedup.add(make_grant())

        other = make_grant(
            source_name="other",
            source_id="2",
            title="Community Arts Festival Support",
            sponsor="City Arts Council",
            summary="Support for local festivals.",
            description="Support for local festivals.",
        )

        assert dedup.check(other).classification == DedupClass.NEW

    def test_seeded_fingerprints(self, make_grant):
        """Test that fingerprints loaded from the store are honored."""
        grant = make_grant()
        dedup = Deduplicator(fingerprints={fingerprint_grant(grant): "sam_gov:77"})

        result = dedup.check(grant)

        assert result.is_duplicate
        assert dedup.owner_of(result.fingerprint) == "sam_gov:77"

    def test_clear(self, make_grant):
        """Test clearing the index."""
        dedup = Deduplicator()
        dedup.add(make_grant())
        dedup.clear()

        assert len(dedup) == 0
        assert dedup.fingerprints == set()


class TestRecordSimilarity:
    """Tests for calculate_record_similarity function."""

    def record(self, **overrides):
        data = dict(
            source_name="grants_gov",
            source_id="1",
            title="Rural Energy Grant",
            sponsor="Department of Agriculture",
            url="https://www.grants.gov/detail/1",
            hash_fingerprint="fp",
            amount_min=1000,
            amount_max=5000,
            deadline_date=date(2025, 9, 30),
        )
        data.update(overrides)
        return NormalizedGrant(**data)

    def test_identical(self):
        """Test that identical records score 100."""
        assert calculate_record_similarity(self.record(), self.record(source_id="2")) == 100

    def test_partial_matches(self):
        """Test title overlap, funding ratio, near deadline and same host."""
        other = self.record(
            title="Rural Energy Program",
            amount_min=2000,
            deadline_date=date(2025, 10, 3),
            url="https://www.grants.gov/detail/2",
        )

        # title 0.5*40 + sponsor 20 + funding 0.5*10 + deadline 5 + host 5
        assert calculate_record_similarity(self.record(), other) == 55

    def test_unrelated(self):
        """Test that records sharing nothing score 0."""
        other = self.record(
            title="Urban Housing Loan",
            sponsor="City Council",
            amount_min=None,
            amount_max=None,
            deadline_date=date(2026, 1, 15),
            url="https://housing.example.org/loan",
        )

        assert calculate_record_similarity(self.record(), other) == 0
