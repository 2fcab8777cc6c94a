import json
import os
import shutil
import sys
import tempfile
import unittest

import yaml

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..')))

# Import the pipeline
from erppost.exceptions import MissingArtifactError
from erppost.pipeline import Pipeline, _strip_json_comments
from erppost.registry import STEP_REGISTRY
from erppost.run_state import RunState
from erppost.steps.base import BaseStep


# Create a simple mock step for testing
class MockStep(BaseStep):
    """A simple mock step for testing."""

    calls = []

    def run(self, data):
        MockStep.calls.append(("run", self.params.get("tag")))
        return data

    def load_existing(self, data):
        MockStep.calls.append(("reload", self.params.get("tag")))
        return data


class TestPipeline(unittest.TestCase):
    """Unit tests for the Pipeline class."""

    @classmethod
    def setUpClass(cls):
        cls.temp_dir = tempfile.mkdtemp()

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(cls.temp_dir, ignore_errors=True)

    def setUp(self):
        # Register mock step
        self.original_registry = STEP_REGISTRY.copy()
        STEP_REGISTRY["MockStep"] = MockStep
        MockStep.calls = []

        self.config = {
            "directory": {
                "root": self.temp_dir,
                "epochs_dir": "epochs",
                "derivatives_dir": "derivatives",
                "reports_dir": "reports",
            },
            "subjects": ["390001", "390002"],
            "output_label": "unit",
            "pipeline": {
                "steps": [
                    {"name": "MockStep", "params": {"tag": "first"}},
                    {"name": "MockStep", "params": {"tag": "second"}},
                ]
            },
        }
        self.config_file = os.path.join(self.temp_dir, "test_config.yaml")
        with open(self.config_file, "w") as f:
            yaml.dump(self.config, f)

    def tearDown(self):
        # Restore original registry
        STEP_REGISTRY.clear()
        STEP_REGISTRY.update(self.original_registry)

    def test_init_with_config_file(self):
        pipeline = Pipeline(config_file=self.config_file)
        self.assertEqual(pipeline.subjects, ["390001", "390002"])
        self.assertEqual(pipeline.config["pipeline"]["steps"][0]["name"], "MockStep")

    def test_init_with_jsonc_file(self):
        path = os.path.join(self.temp_dir, "config.json")
        with open(path, "w") as f:
            f.write("// run config\n" + json.dumps(self.config, indent=2).replace("{", "{ /* c */", 1))
        pipeline = Pipeline(config_file=path)
        self.assertEqual(pipeline.paths.output_label, "unit")

    def test_missing_config_file(self):
        with self.assertRaises(FileNotFoundError):
            Pipeline(config_file=os.path.join(self.temp_dir, "nope.json"))

    def test_invalid_config(self):
        bad = dict(self.config)
        bad.pop("subjects")
        with self.assertRaises(ValueError) as ctx:
            Pipeline(config_dict=bad)
        self.assertIn("Configuration validation failed", str(ctx.exception))

    def test_invalid_step_params(self):
        bad = dict(self.config)
        bad["pipeline"] = {"steps": [{"name": "ElectrodeClusterStep", "params": {"cluster_size": 9}}]}
        with self.assertRaises(ValueError):
            Pipeline(config_dict=bad)

    def test_find_step_index(self):
        pipeline = Pipeline(config_dict=self.config)
        steps = [{"name": "StepA"}, {"name": "StepB"}]
        self.assertEqual(pipeline._find_step_index(steps, "StepB"), 1)
        self.assertIsNone(pipeline._find_step_index(steps, "StepD"))

    def test_run_executes_steps_and_writes_report(self):
        pipeline = Pipeline(config_dict=self.config)
        state = pipeline.run()
        self.assertIsInstance(state, RunState)
        self.assertEqual(MockStep.calls, [("run", "first"), ("run", "second")])
        self.assertEqual([s.status for s in state.report.steps], ["executed", "executed"])
        self.assertTrue((pipeline.paths.run_dir / "processing_report.json").exists())
        self.assertTrue((pipeline.paths.run_dir / "processing_report.txt").exists())

    def test_disabled_step_reloads(self):
        cfg = dict(self.config)
        cfg["pipeline"] = {"steps": [
            {"name": "MockStep", "params": {"tag": "first"}},
            {"name": "MockStep", "enabled": False, "params": {"tag": "second"}},
            {"name": "MockStep", "params": {"tag": "third"}},
        ]}
        pipeline = Pipeline(config_dict=cfg)
        self.assertEqual([m for _, _, m in pipeline.plan()], ["run", "reload", "run"])
        pipeline.run()
        self.assertEqual(MockStep.calls, [("run", "first"), ("reload", "second"), ("run", "third")])

    def test_start_from_step_reloads_earlier_steps(self):
        STEP_REGISTRY["OtherStep"] = MockStep
        cfg = dict(self.config)
        cfg["start_from_step"] = "OtherStep"
        cfg["pipeline"] = {"steps": [
            {"name": "MockStep", "params": {"tag": "first"}},
            {"name": "OtherStep", "params": {"tag": "second"}},
        ]}
        pipeline = Pipeline(config_dict=cfg)
        self.assertEqual([m for _, _, m in pipeline.plan()], ["reload", "run"])
        state = pipeline.run()
        self.assertEqual(MockStep.calls, [("reload", "first"), ("run", "second")])
        self.assertEqual([s.status for s in state.report.steps], ["reloaded", "executed"])

    def test_disabled_step_without_artifact(self):
        cfg = dict(self.config)
        cfg["pipeline"] = {"steps": [{"name": "GrandAverageStep", "enabled": False}]}
        pipeline = Pipeline(config_dict=cfg)
        with self.assertRaises(MissingArtifactError):
            pipeline.run()

    def test_downstream_step_without_upstream(self):
        cfg = dict(self.config)
        cfg["pipeline"] = {"steps": [{"name": "DifferenceWaveStep"}]}
        with self.assertRaises(MissingArtifactError):
            Pipeline(config_dict=cfg).run()

    def test_unknown_step_hint(self):
        cfg = dict(self.config)
        cfg["pipeline"] = {"steps": [{"name": "GrandAverage"}]}
        pipeline = Pipeline(config_dict=cfg)
        with self.assertRaises(ValueError) as ctx:
            pipeline.run()
        self.assertIn("Did you mean: GrandAverageStep", str(ctx.exception))

    def test_strip_json_comments_keeps_urls(self):
        text = '{"a": "http://x.org", // trailing\n "b": 1 /* block */}'
        self.assertEqual(json.loads(_strip_json_comments(text)), {"a": "http://x.org", "b": 1})


if __name__ == '__main__':
    unittest.main()
