"""Tests for rank fusion and in-memory scoring."""

import math

import pytest

from hybrid_rag.rag.fusion import build_idf, cosine_similarity, keyword_score, reciprocal_rank_fusion, tokenize


@pytest.mark.unit
class TestReciprocalRankFusion:
    def test_two_rankings(self):
        fused = dict(reciprocal_rank_fusion([["A", "B", "C"], ["B", "A", "D"]], k=60))

        assert fused["A"] == pytest.approx(1 / 61 + 1 / 62)
        assert fused["B"] == pytest.approx(1 / 61 + 1 / 62)
        assert fused["C"] == pytest.approx(1 / 63)
        assert fused["D"] == pytest.approx(1 / 63)

    def test_order_and_tie_break(self):
        ids = [doc_id for doc_id, _ in reciprocal_rank_fusion([["A", "B", "C"], ["B", "A", "D"]])]
        # ties keep first-appearance order
        assert ids == ["A", "B", "C", "D"]

    def test_single_ranking_contributes_only_its_term(self):
        fused = reciprocal_rank_fusion([["X"], []], k=60)
        assert fused == [("X", pytest.approx(1 / 61))]

    def test_document_in_both_rankings_beats_single(self):
        fused = reciprocal_rank_fusion([["A", "B"], ["B"]], k=60)
        assert fused[0][0] == "B"

    def test_empty(self):
        assert reciprocal_rank_fusion([]) == []


@pytest.mark.unit
class TestTokenize:
    def test_lowercases_and_splits(self):
        assert tokenize("Monter Skinnen, 20 mm!") == ["monter", "skinnen", "20", "mm"]

    def test_norwegian_letters(self):
        assert tokenize("Blåbær-syltetøy ÆØÅ") == ["blåbær", "syltetøy", "æøå"]


@pytest.mark.unit
class TestIdfAndKeywordScore:
    def test_ubiquitous_term_has_idf_one(self):
        idf = build_idf(["vindu dør", "vindu tak", "vindu"])
        assert idf["vindu"] == pytest.approx(1.0)

    def test_rare_term_has_higher_idf(self):
        idf = build_idf(["vindu dør", "vindu tak", "vindu"])
        assert idf["dør"] == pytest.approx(math.log(4 / 2) + 1)
        assert idf["dør"] > idf["vindu"]

    def test_keyword_score_tf_times_idf(self):
        idf = {"vindu": 1.0, "dør": 2.0}
        assert keyword_score("vindu vindu dør", "vindu dør", idf) == pytest.approx(2 * 1.0 + 1 * 2.0)

    def test_short_query_tokens_ignored(self):
        assert keyword_score("a b c", "a b", {"a": 5.0}) == 0.0

    def test_unknown_term_uses_idf_one(self):
        assert keyword_score("takstein takstein", "takstein", {}) == pytest.approx(2.0)

    def test_no_match_scores_zero(self):
        assert keyword_score("vindu", "dør", {"dør": 2.0}) == 0.0


@pytest.mark.unit
class TestCosine:
    def test_self_similarity_is_one(self):
        v = [0.3, -1.2, 4.0]
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_symmetric_and_bounded(self):
        a, b = [1.0, 2.0, 3.0], [-2.0, 0.5, 1.0]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
        assert -1.0 <= cosine_similarity(a, b) <= 1.0

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_zero_norm_is_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([], [1.0]) == 0.0

    def test_uses_common_prefix(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 5.0]) == pytest.approx(1.0)
