import numpy as np
import pytest

from erppost.exceptions import ConfigurationError
from erppost.utils.averaging import make_grand_averages
from erppost.utils.difference_waves import (
    DifferenceWaveSpec,
    compute_difference_wave,
    compute_difference_waves,
    parse_difference_wave_table,
)
from erppost.utils.inclusion import InclusionCriteria
from erppost.utils.trimming import TrimmingCriteria

CODES = [111, 112, 113, 102, 104, 202, 204]


@pytest.fixture
def misaligned(make_recording, fake_store):
    """112 has subjects {A, B, C}; 111 has {B, C, D}. Epoch values are subject_number * code."""
    store = fake_store({
        "A": make_recording("A", {111: 3, 112: 12}, scale=1.0),
        "B": make_recording("B", {111: 12, 112: 12}, scale=2.0),
        "C": make_recording("C", {111: 12, 112: 12}, scale=3.0),
        "D": make_recording("D", {111: 12, 112: 3}, scale=4.0),
    })
    return make_grand_averages(["A", "B", "C", "D"], store, CODES, TrimmingCriteria(), InclusionCriteria())


def test_pairs_each_subject_with_itself(misaligned):
    assert misaligned[112].subjects == ["A", "B", "C"]
    assert misaligned[111].subjects == ["B", "C", "D"]

    wave = compute_difference_wave(DifferenceWaveSpec(112, 111, "err"), misaligned)
    assert wave.subjects == ["B", "C"]
    assert wave.data.shape == (3, 5, 2)
    np.testing.assert_allclose(wave.data[..., 0], 2.0)
    np.testing.assert_allclose(wave.data[..., 1], 3.0)


def test_subject_count_bounded_by_smaller_stack(misaligned):
    wave = compute_difference_wave(DifferenceWaveSpec(112, 111, "err"), misaligned)
    assert wave.n_subjects <= min(misaligned[112].n_subjects, misaligned[111].n_subjects)
    assert wave.n_subjects < misaligned[112].n_subjects

    same = compute_difference_wave(DifferenceWaveSpec(102, 104, "inv"), misaligned)
    assert same.n_subjects == misaligned[102].n_subjects == misaligned[104].n_subjects


def test_uncomputable_rows_are_skipped(misaligned):
    table = [[113, 111, "no-113"], [112, 111, "ok"], [999, 111, "unknown-code"]]
    dw = compute_difference_waves(table, misaligned)
    assert list(dw.waves) == ["ok"]
    assert set(dw.skipped) == {"no-113", "unknown-code"}
    assert [s.name for s in dw.table] == ["no-113", "ok", "unknown-code"]


@pytest.mark.parametrize("table", [
    [],
    "112,111,x",
    [[112, 111]],
    [[112, "abc", "x"]],
    [[112, 111, ""]],
    [[112, 111, "x"], [113, 111, "x"]],
    [{"minuend": 112, "name": "x"}],
])
def test_malformed_table(table):
    with pytest.raises(ConfigurationError):
        parse_difference_wave_table(table)


def test_dict_rows_accepted():
    specs = parse_difference_wave_table([{"minuend": "112", "subtrahend": 111, "name": " err "}])
    assert specs == [DifferenceWaveSpec(112, 111, "err")]
