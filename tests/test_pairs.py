"""Tests for the canonical feature-pair order."""

import numpy as np
import pytest

from diffprop.core.pairs import enumerate_pairs, index_to_pair, n_pairs, pair_to_index


class TestEnumeratePairs:
    """Order, completeness and bounds of enumerate_pairs."""

    def test_small_order(self):
        partner, pair = enumerate_pairs(4)
        assert list(zip(partner.tolist(), pair.tolist())) == [
            (0, 1), (0, 2), (1, 2), (0, 3), (1, 3), (2, 3),
        ]

    @pytest.mark.parametrize("d", [2, 3, 7, 20])
    def test_complete_without_duplicates(self, d):
        partner, pair = enumerate_pairs(d)
        assert len(partner) == n_pairs(d) == d * (d - 1) // 2
        assert np.all(partner < pair)
        assert len(set(zip(partner.tolist(), pair.tolist()))) == n_pairs(d)

    def test_prefix_property(self):
        """Pairs of the first d features come first for any larger d."""
        p5, q5 = enumerate_pairs(5)
        p9, q9 = enumerate_pairs(9)
        np.testing.assert_array_equal(p9[:len(p5)], p5)
        np.testing.assert_array_equal(q9[:len(q5)], q5)

    @pytest.mark.parametrize("d", [0, 1])
    def test_too_few_features(self, d):
        with pytest.raises(ValueError):
            enumerate_pairs(d)


class TestPairIndex:
    """pair_to_index / index_to_pair round trip."""

    def test_matches_enumeration(self):
        partner, pair = enumerate_pairs(12)
        k = pair_to_index(partner, pair)
        np.testing.assert_array_equal(k, np.arange(len(partner)))

    def test_order_insensitive(self):
        assert pair_to_index(3, 5) == pair_to_index(5, 3) == 5 * 4 // 2 + 3

    def test_inverse(self):
        for k in range(500):
            i, j = index_to_pair(k)
            assert i < j
            assert pair_to_index(i, j) == k

    def test_large_index(self):
        k = pair_to_index(123_456, 987_654)
        assert index_to_pair(k) == (123_456, 987_654)

    def test_rejects_same_feature(self):
        with pytest.raises(ValueError):
            pair_to_index(2, 2)

    def test_rejects_negative(self):
        with pytest.raises(ValueError):
            pair_to_index(-1, 2)
        with pytest.raises(ValueError):
            index_to_pair(-1)
