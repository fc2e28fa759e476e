import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_array_equal

from dirmult_shrink import AlphaVector, CountMatrix, InvalidInputError


def test_count_matrix_basic_properties():
    m = CountMatrix([[1, 2, 3], [0, 0, 0], [4, 0, 1]], categories=["a", "b", "c"])
    assert m.n_entities == 3
    assert m.n_categories == 3
    assert_array_equal(m.totals, [6, 0, 5])
    assert_array_equal(m.usable_mask, [True, False, True])
    assert m.n_degenerate == 1
    assert m.entity_ids == ["0", "1", "2"]
    assert m.proportions().shape == (2, 3)


def test_count_matrix_is_read_only():
    source = np.array([[1, 2], [3, 4]])
    m = CountMatrix(source)
    with pytest.raises(ValueError):
        m.counts[0, 0] = 10
    source[0, 0] = 99
    assert m.counts[0, 0] == 1


def test_count_matrix_from_dataframe_with_id_col():
    df = pd.DataFrame(
        {
            "playerID": ["aaronha01", "ruthba01"],
            "Single": [10, 12],
            "Double": [3, 4],
            "HR": [5, 9],
            "NonHit": [40, 35],
        }
    )
    m = CountMatrix.from_dataframe(df, id_col="playerID")
    assert m.categories == ["Single", "Double", "HR", "NonHit"]
    assert m.entity_ids == ["aaronha01", "ruthba01"]
    assert m.to_frame().loc["ruthba01", "HR"] == 9


def test_count_matrix_from_dataframe_category_subset():
    df = pd.DataFrame({"x": [1, 2], "y": [3, 4], "z": [5, 6]}, index=["p", "q"])
    m = CountMatrix.from_dataframe(df, categories=["z", "x"])
    assert_array_equal(m.counts, [[5, 1], [6, 2]])
    assert m.entity_ids == ["p", "q"]


@pytest.mark.parametrize(
    "counts",
    [
        [[1], [2]],               # k < 2
        [1, 2, 3],                # not 2-D
        [[1, -1], [2, 3]],        # negative
        [[1.5, 2], [2, 3]],       # not whole
        [[np.nan, 2], [2, 3]],    # not finite
        [["a", "b"], ["c", "d"]], # not numeric
    ],
)
def test_count_matrix_rejects_malformed(counts):
    with pytest.raises(InvalidInputError):
        CountMatrix(counts)


def test_count_matrix_label_mismatch():
    with pytest.raises(InvalidInputError):
        CountMatrix([[1, 2], [3, 4]], categories=["only_one"])
    with pytest.raises(InvalidInputError):
        CountMatrix([[1, 2], [3, 4]], entity_ids=["a"])


def test_from_dataframe_missing_columns():
    df = pd.DataFrame({"x": [1], "y": [2]})
    with pytest.raises(InvalidInputError):
        CountMatrix.from_dataframe(df, categories=["x", "w"])
    with pytest.raises(InvalidInputError):
        CountMatrix.from_dataframe(df, id_col="playerID")


def test_alpha_vector():
    a = AlphaVector([2.0, 3.0, 5.0], ["a", "b", "c"])
    assert a.total == pytest.approx(10.0)
    np.testing.assert_allclose(a.prior_mean, [0.2, 0.3, 0.5])
    assert len(a) == 3
    assert a.to_series()["c"] == 5.0


@pytest.mark.parametrize("values", [[1.0, 0.0], [1.0, -2.0], [1.0, np.inf], [1.0], [[1.0, 2.0]]])
def test_alpha_vector_rejects_invalid(values):
    with pytest.raises(InvalidInputError):
        AlphaVector(values)
