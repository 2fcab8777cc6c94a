import numpy as np
import pytest

from erppost.exceptions import AccuracyUndefinedError
from erppost.utils.averaging import make_grand_averages, process_subject
from erppost.utils.difference_waves import compute_difference_waves
from erppost.utils.inclusion import InclusionCriteria
from erppost.utils.trimming import TrimmingCriteria

CODES = [111, 112, 113, 102, 104, 202, 204]


@pytest.fixture
def criteria():
    return TrimmingCriteria(), InclusionCriteria()


def test_scenario_partial_condition_inclusion(make_recording, fake_store, criteria):
    """S qualifies for 111 and 112 but not 113."""
    store = fake_store({
        "S": make_recording("S", {111: 12, 112: 12, 113: 3}, scale=1.0),
        "T": make_recording("T", {111: 12, 112: 12, 113: 12}, scale=2.0),
    })
    ga = make_grand_averages(["S", "T"], store, CODES, *criteria)

    assert ga[111].subjects == ["S", "T"]
    assert ga[112].subjects == ["S", "T"]
    assert ga[113].subjects == ["T"]
    np.testing.assert_allclose(ga[113].data[..., 0], 2.0 * 113)

    dw = compute_difference_waves([[112, 111, "err"], [113, 111, "nfe"]], ga)
    assert dw["err"].subjects == ["S", "T"]
    assert dw["nfe"].subjects == ["T"]
    np.testing.assert_allclose(dw["nfe"].data[..., 0], 2.0 * (113 - 111))


def test_stack_size_matches_condition_inclusion(make_recording, fake_store, criteria):
    rng = np.random.RandomState(0)
    recordings = {}
    for i in range(6):
        trials = {code: int(rng.randint(5, 15)) for code in (111, 112, 113)}
        recordings[f"S{i}"] = make_recording(f"S{i}", trials, scale=i + 1)
    ga = make_grand_averages(list(recordings), fake_store(recordings), CODES, *criteria)

    for code in CODES:
        expected = [s for s in ga.inclusion.included_subjects if ga.inclusion[s].is_included_for(code)]
        assert ga[code].n_subjects == len(expected)
        assert ga[code].subjects == expected
        for subject in expected:
            position = ga.inclusion.position_of(subject, code)
            np.testing.assert_allclose(ga[code].data[..., position], (int(subject[1:]) + 1) * code)


def test_missing_subject_is_skipped(make_recording, fake_store, criteria):
    store = fake_store({"B": make_recording("B", {111: 12, 112: 12, 113: 12})})
    ga = make_grand_averages(["A", "B"], store, CODES, *criteria)

    assert store.loaded == ["A", "B"]
    assert ga.inclusion.included_subjects == ["B"]
    assert "recording unavailable" in ga.inclusion["A"].exclusion_reason
    assert ga.stats_for("A", 111).original == 0
    assert ga[111].subjects == ["B"]


def test_low_accuracy_subject_gets_zeroed_stats(make_recording, criteria):
    recording = make_recording("S", {111: 5, 112: 20, 113: 20}, extra_correct=0)
    record, stats, averages = process_subject(recording, CODES, *criteria)
    assert not record.dataset_included
    assert record.exclusion_reason.startswith("accuracy")
    assert all(s.final == 0 for s in stats.values())
    assert averages == {}


def test_primary_failure_excludes_from_every_stack(make_recording, fake_store, criteria):
    store = fake_store({
        "A": make_recording("A", {111: 12, 112: 12, 113: 12, 104: 4}),
        "B": make_recording("B", {111: 12, 112: 12, 113: 12}),
    })
    ga = make_grand_averages(["A", "B"], store, CODES, *criteria)
    assert ga.inclusion.excluded_subjects == ["A"]
    for code in CODES:
        assert "A" not in ga[code].subjects


def test_empty_condition_gives_empty_stack(make_recording, fake_store, criteria):
    store = fake_store({"A": make_recording("A", {111: 12, 112: 12})})
    ga = make_grand_averages(["A"], store, CODES, *criteria)
    assert ga[113].is_empty
    assert ga[113].data.shape == (3, 5, 0)
    with pytest.raises(ValueError):
        ga[113].mean()


def test_compound_code_pools_both_errors(make_recording, fake_store, criteria):
    store = fake_store({"A": make_recording("A", {111: 12, 112: 6, 113: 6})})
    ga = make_grand_averages(["A"], store, CODES + [110], *criteria)
    assert ga.stats_for("A", 110).final == 12
    np.testing.assert_allclose(ga[110].mean(), (112 + 113) / 2)


def test_undefined_accuracy_is_fatal(make_recording, fake_store, criteria):
    store = fake_store({"A": make_recording("A", {}, extra_correct=0)})
    with pytest.raises(AccuracyUndefinedError):
        make_grand_averages(["A"], store, CODES, *criteria)


def test_primary_conditions_checked_when_not_averaged(make_recording, fake_store, criteria):
    store = fake_store({
        "A": make_recording("A", {111: 12, 112: 12, 113: 12}),
        "B": make_recording("B", {111: 12, 112: 12, 113: 12, 204: 4}),
    })
    ga = make_grand_averages(["A", "B"], store, [111, 112, 113], *criteria)

    assert ga.inclusion.included_subjects == ["A"]
    assert ga.inclusion["B"].failed_primary == (204,)
    assert sorted(ga.stacks) == [111, 112, 113]
    assert ga[111].subjects == ["A"]


def test_layout_mismatch_excludes_subject(make_recording, fake_store, criteria):
    store = fake_store({
        "A": make_recording("A", {111: 12, 112: 12, 113: 12}),
        "B": make_recording("B", {111: 12, 112: 12, 113: 12}, n_channels=4),
    })
    ga = make_grand_averages(["A", "B"], store, CODES, *criteria)

    assert ga.inclusion.included_subjects == ["A"]
    assert ga.inclusion["B"].exclusion_reason == "channel/time layout mismatch"
    assert ga.summaries["B"].status == "excluded"
    assert ga.stats_for("B", 111).original == 0
    assert ga.ch_names == ("1", "2", "3")
