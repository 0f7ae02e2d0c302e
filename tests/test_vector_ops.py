"""
Tests for vector operations used as reduce combine functions.
"""

import itertools
import math

import pytest
import torch

from core.exceptions import EmptyInputError, LengthMismatchError
from core.vector_ops import (
    COMBINE_FUNCTIONS,
    combine_name,
    has_nan,
    resolve_combine,
    vector_average,
    vector_sum,
)


def vec(*values):
    return torch.tensor(values, dtype=torch.float64)


class TestVectorSum:
    """Test elementwise sum."""

    def test_sum_is_elementwise(self):
        """Each element of the result is the sum of that element across inputs."""
        vectors = [vec(1, 2, 3), vec(4, 5, 6), vec(-1, 0, 0.5)]
        result = vector_sum(vectors)

        for k in range(3):
            assert result[k].item() == pytest.approx(sum(v[k].item() for v in vectors))

    def test_single_vector(self):
        """Summing one vector returns an equal copy."""
        v = vec(1.5, -2.0)
        result = vector_sum([v])

        assert torch.equal(result, v)
        assert result is not v

    def test_sum_of_scalars(self):
        """0-dim tensors (error scalars) are summed the same way."""
        result = vector_sum([torch.tensor(0.5), torch.tensor(1.5)])

        assert result.dim() == 0
        assert result.item() == pytest.approx(2.0)

    def test_order_independent(self):
        """Permuting the inputs does not change the sum."""
        vectors = [vec(1, 2), vec(3, 4), vec(5, 6), vec(0.25, -8)]
        expected = vector_sum(vectors)

        for perm in itertools.permutations(vectors):
            assert torch.equal(vector_sum(list(perm)), expected)

    def test_length_mismatch(self):
        """Vectors of different length are rejected."""
        with pytest.raises(LengthMismatchError):
            vector_sum([vec(1, 2), vec(1, 2, 3)])

    def test_empty_input(self):
        """An empty input is rejected."""
        with pytest.raises(EmptyInputError):
            vector_sum([])

    def test_inputs_not_modified(self):
        """The operation is pure."""
        a, b = vec(1, 2), vec(3, 4)
        vector_sum([a, b])

        assert torch.equal(a, vec(1, 2))
        assert torch.equal(b, vec(3, 4))


class TestVectorAverage:
    """Test elementwise average."""

    def test_average_is_sum_over_count(self):
        """Average equals sum divided by the number of vectors."""
        vectors = [vec(0, 0), vec(2, 2)]

        assert torch.equal(vector_average(vectors), vec(1, 1))
        assert torch.allclose(vector_average(vectors), vector_sum(vectors) / 2)

    def test_average_of_three(self):
        vectors = [vec(1, 4), vec(2, 5), vec(3, 9)]
        assert torch.allclose(vector_average(vectors), vec(2, 6))

    def test_empty_input(self):
        with pytest.raises(EmptyInputError):
            vector_average([])

    def test_nan_propagates(self):
        """A NaN in any input makes that element of the average NaN."""
        result = vector_average([vec(float('nan'), 0), vec(1, 2)])

        assert math.isnan(result[0].item())
        assert result[1].item() == pytest.approx(1.0)


class TestHasNaN:
    """Test NaN detection."""

    def test_detects_nan(self):
        assert has_nan(vec(1, float('nan'), 3))

    def test_finite_vector(self):
        assert not has_nan(vec(1, 2, 3))

    def test_infinity_is_not_nan(self):
        assert not has_nan(vec(float('inf'), -float('inf')))

    def test_scalar(self):
        assert has_nan(torch.tensor(float('nan')))
        assert not has_nan(torch.tensor(0.0))


class TestCombineRegistry:
    """Test lookup of combine functions by name."""

    def test_registered_names(self):
        assert COMBINE_FUNCTIONS["sum"] is vector_sum
        assert COMBINE_FUNCTIONS["average"] is vector_average

    def test_resolve_name_and_callable(self):
        assert resolve_combine("sum") is vector_sum
        assert resolve_combine(vector_average) is vector_average

    def test_resolve_unknown(self):
        with pytest.raises(ValueError):
            resolve_combine("median")

    def test_combine_name(self):
        assert combine_name(vector_sum) == "sum"
        assert combine_name("average") == "average"

    def test_combine_name_unregistered_callable(self):
        with pytest.raises(ValueError):
            combine_name(lambda vectors: vectors[0])
