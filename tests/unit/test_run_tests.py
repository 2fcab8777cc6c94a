import importlib.util
import os

import pytest

RUNNER = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'run_tests.py'))


@pytest.fixture
def runner(monkeypatch):
    spec = importlib.util.spec_from_file_location("erppost_test_runner", RUNNER)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    calls = []

    def fake_main(args):
        calls.append(list(args))
        return 1

    monkeypatch.setattr(module.pytest, "main", fake_main)
    return module, calls


def test_selections_go_through_pytest(runner):
    module, calls = runner
    assert module.run_unit_tests() == 1
    assert module.run_integration_tests(["-k", "cli"]) == 1
    assert module.run_all_tests() == 1

    unit, integration, everything = calls
    assert unit[-1].endswith(os.path.join("tests", "unit"))
    assert integration[-3].endswith(os.path.join("tests", "integration"))
    assert integration[-2:] == ["-k", "cli"]
    assert everything[-1] == os.path.dirname(RUNNER)
