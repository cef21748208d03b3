"""Tests for quasirandom point offsets."""

import numpy as np
import pytest

from foxrepro.visualization.quasirandom import (
    group_quasirandom,
    quasirandom_offsets,
    van_der_corput,
)


class TestVanDerCorput:
    """Tests for the low-discrepancy sequence."""

    def test_base_two_sequence(self):
        np.testing.assert_allclose(
            van_der_corput(7), [0.5, 0.25, 0.75, 0.125, 0.625, 0.375, 0.875]
        )

    def test_values_in_unit_interval(self):
        seq = van_der_corput(100)
        assert np.all((seq > 0) & (seq < 1))
        assert len(np.unique(seq)) == 100


class TestOffsets:
    """Tests for offsets within one group."""

    def test_within_width(self, rng):
        offsets = quasirandom_offsets(rng.normal(size=200), width=0.3)
        assert np.all(np.abs(offsets) <= 0.3)

    def test_deterministic(self, rng):
        y = rng.normal(size=50)
        np.testing.assert_array_equal(quasirandom_offsets(y), quasirandom_offsets(y))

    def test_small_groups(self):
        assert quasirandom_offsets(np.array([])).shape == (0,)
        np.testing.assert_array_equal(quasirandom_offsets(np.array([3.0])), [0.0])

    def test_constant_values_spread(self):
        offsets = quasirandom_offsets(np.full(8, 4.0), width=0.4)
        assert len(np.unique(offsets)) == 8

    def test_tails_narrower_than_centre(self, rng):
        y = np.sort(rng.normal(size=400))
        offsets = np.abs(quasirandom_offsets(y))
        assert offsets[:20].max() < offsets[180:220].max()


class TestGrouping:
    """Tests for grouped positions."""

    def test_positions_stay_near_group(self, rng):
        x = np.repeat([1.0, 2.0, 3.0], 30)
        y = rng.poisson(5, size=90).astype(float)
        positions = group_quasirandom(x, y, width=0.4)

        assert positions.shape == x.shape
        assert np.all(np.abs(positions - x) <= 0.4)

    def test_group_offsets_independent(self, rng):
        y = rng.normal(size=20)
        together = group_quasirandom(np.r_[np.zeros(20), np.ones(20)], np.r_[y, y + 10])
        np.testing.assert_allclose(together[20:] - 1.0, together[:20])
