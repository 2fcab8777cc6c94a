"""
Pipeline entrypoint and runner.

Supports JSON (preferred) and YAML configuration files, with validation
against `erppost/config_schema.json`.
"""

import argparse
import difflib
import json
import logging
import os
import sys
import time
from datetime import datetime
from pathlib import Path

import yaml
from jsonschema import Draft7Validator

# A global STEP_REGISTRY that maps "step name" -> "step class"
from erppost.registry import STEP_REGISTRY
from erppost.run_state import RunState
from erppost.steps.project_paths import ProjectPaths
from erppost.utils.reporting import ProcessingReport, console_summary, write_processing_report

# Import all steps to register them
from .steps import *  # noqa: F401,F403

logger = logging.getLogger(__name__)

# Top-level options every step receives, in addition to its own params.
SHARED_OPTIONS = ("epochs_filename", "behavior_filename")


class Pipeline:
    """
    A pipeline that executes a list of steps in order over one run state.
    Steps can be specified via a JSON/YAML file or a Python dict.

    A step with ``enabled: false`` (or placed before ``start_from_step``) is
    not recomputed: its artifact is reloaded from the run output directory.
    """

    def __init__(self, config_file="configs/erp_postprocessing.json", config_dict=None, validate_config=True):
        self.config = self._load_config(config_file, config_dict, validate=validate_config)
        self.paths = ProjectPaths(self.config)
        self.subjects = [str(s) for s in self.config.get("subjects", [])]
        self.data = None

    def _load_config(self, config_file, config_dict, validate=True):
        """Load config from dict or file (JSON or YAML) and optionally validate."""
        if config_dict is not None:
            config = config_dict
        else:
            if config_file is None:
                raise ValueError("No configuration provided. Use --config to specify a file.")
            cfg_path = Path(os.path.expandvars(os.path.expanduser(config_file)))
            if not cfg_path.exists():
                raise FileNotFoundError(f"Config file not found: {cfg_path}")

            ext = cfg_path.suffix.lower()
            try:
                with open(cfg_path, "r", encoding="utf-8") as f:
                    if ext in (".json", ".jsonc"):
                        # Basic JSONC support: strip // and /* */ comments
                        text = _strip_json_comments(f.read())
                        config = json.loads(text)
                    elif ext in (".yml", ".yaml"):
                        config = yaml.safe_load(f)
                    else:
                        raise ValueError(f"Unsupported config extension '{ext}'. Use .json, .yaml, or .yml")
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON in config {cfg_path}: {e}") from e
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in config {cfg_path}: {e}") from e

        if validate:
            _validate_config_schema(config)
        return config

    def plan(self):
        """List of (index, step name, "run" | "reload") in execution order."""
        steps_def = self.config["pipeline"]["steps"]
        start_index = self._start_index(steps_def)
        plan = []
        for i, step_info in enumerate(steps_def):
            reload = not step_info.get("enabled", True) or (start_index is not None and i < start_index)
            plan.append((i, step_info["name"], "reload" if reload else "run"))
        return plan

    def _start_index(self, steps_def):
        start_from_step = self.config.get("start_from_step")
        if not start_from_step:
            return None
        index = self._find_step_index(steps_def, start_from_step)
        if index is None:
            logger.warning(f"Requested step '{start_from_step}' not found in pipeline. Starting from beginning.")
        else:
            logger.info(f"Will start from step {start_from_step} (reloading [0..{index - 1}])")
        return index

    def run(self):
        """Run every configured step, then write the processing report."""
        steps_def = self.config["pipeline"]["steps"]
        if not self.subjects:
            logger.warning("No subjects configured.")

        report = ProcessingReport(output_dir=str(self.paths.run_dir), subjects_requested=list(self.subjects))
        self.data = RunState(report=report)
        logger.info(f"Output directory: {self.paths.run_dir}")

        self._run_steps(steps_def, self._start_index(steps_def))

        report.finished = datetime.now()
        summary = self.data.report_dict()
        report_path = write_processing_report(summary,
                                              self.paths.get_report_path("processing_report.json"),
                                              self.paths.get_report_path("processing_report.txt"))
        logger.info(f"Processing report saved to: {report_path}")
        print(console_summary(summary))
        logger.info("[SUCCESS] Pipeline completed.")
        return self.data

    def _run_steps(self, steps_def, start_index=None):
        """
        Runs the pipeline steps. Steps before ``start_index`` and disabled
        steps reload their artifact instead of running.
        """
        for i, step_info in enumerate(steps_def):
            step_name = step_info["name"]
            reload = not step_info.get("enabled", True) or (start_index is not None and i < start_index)

            params = dict(step_info.get("params", {}))
            params["paths"] = self.paths
            params["subjects"] = list(self.subjects)
            for key in SHARED_OPTIONS:
                if key in self.config:
                    params.setdefault(key, self.config[key])

            logger.info(f"{'Reloading' if reload else 'Running'} step {i}: {step_name}")
            started = time.perf_counter()
            try:
                self._run_step(step_name, params, reload=reload)
            except Exception as e:
                logger.error(f"Error executing step {step_name}: {e}")
                # Stop processing further steps on error
                raise
            elapsed = time.perf_counter() - started
            self.data.report.add_step(step_name, "reloaded" if reload else "executed", elapsed)
            logger.info(f"Step {step_name} completed successfully ({elapsed:.1f} s)")

    def _find_step_index(self, steps_def, step_name):
        """
        Returns the index of the named step if found, else None.
        """
        for i, st in enumerate(steps_def):
            if st["name"] == step_name:
                return i
        return None

    def _run_step(self, step_name, params, reload=False):
        """Instantiate and execute (or reload) one pipeline step."""
        if step_name not in STEP_REGISTRY:
            # Try friendly error with suggestions
            registered = list(STEP_REGISTRY.keys())
            # Common mistake: missing 'Step' suffix
            alt = f"{step_name}Step"
            hints = []
            if alt in STEP_REGISTRY:
                hints.append(alt)
            hints += difflib.get_close_matches(step_name, registered, n=3, cutoff=0.6)
            hint_txt = f" Did you mean: {', '.join(sorted(set(hints)))}?" if hints else ""
            raise ValueError(f"Step '{step_name}' not registered.{hint_txt}")
        step = STEP_REGISTRY[step_name](params)
        if reload:
            self.data = step.load_existing(self.data)
        else:
            self.data = step.run(self.data)


def _strip_json_comments(text: str) -> str:
    """Remove // and /* */ comments from JSON-like text for basic JSONC support."""
    import re as _re
    # Remove /* */ comments
    text = _re.sub(r"/\*.*?\*/", "", text, flags=_re.DOTALL)
    # Remove // comments at line start or after whitespace/punctuation (keeps "http://...")
    text = _re.sub(r"(^|[\s,\[\{])//.*", r"\1", text)
    return text


def _validate_config_schema(config: dict) -> None:
    """Validate config against erppost/config_schema.json and raise helpful errors."""
    schema_path = Path(__file__).with_name("config_schema.json")
    try:
        with open(schema_path, "r", encoding="utf-8") as f:
            schema = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise RuntimeError(f"Failed to load config schema at {schema_path}: {e}") from e

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(config), key=lambda e: list(e.path))
    if errors:
        msgs = []
        for err in errors:
            loc = "/".join([str(x) for x in err.path]) or "<root>"
            msgs.append(f"- {loc}: {err.message}")
        hint = (
            "Common fixes: check 'directory' paths, ensure 'subjects' and 'pipeline.steps' are set, "
            "and verify option names."
        )
        raise ValueError("Configuration validation failed:\n" + "\n".join(msgs) + f"\n{hint}")


def _setup_logging(verbosity: int = 0, log_file: Path | None = None) -> None:
    """Configure console and optional file logging with timestamps."""
    level = logging.INFO if verbosity <= 0 else logging.DEBUG
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def _add_log_file(log_file: Path) -> None:
    """Also write the log into ``log_file`` (the run's console log)."""
    root = logging.getLogger()
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s"))
    root.addHandler(handler)


def print_plan(pipe: Pipeline) -> None:
    print("Pipeline Plan")
    print(f"  output directory: {pipe.paths.run_dir}")
    print(f"  subjects ({len(pipe.subjects)}): {', '.join(pipe.subjects)}")
    for i, name, mode in pipe.plan():
        print(f"  {i}. {name} [{mode}]")


def main(argv: list[str] | None = None) -> int:
    """Simple CLI to run the pipeline from a config file."""
    parser = argparse.ArgumentParser(description="Run ERP post-processing pipeline")
    parser.add_argument("--config", required=True, help="Path to JSON/YAML config file")
    parser.add_argument("--no-validate", action="store_true", help="Disable schema validation")
    parser.add_argument("--verbose", "-v", action="count", default=0, help="Increase verbosity")
    parser.add_argument("--log-file", default=None,
                        help="Log file path (default: console_log.txt in the run output directory)")
    parser.add_argument("--dry-run", action="store_true", help="Print the pipeline plan and exit")
    args = parser.parse_args(argv)

    # Setup logging early
    _setup_logging(args.verbose, log_file=Path(args.log_file) if args.log_file else None)

    try:
        pipe = Pipeline(config_file=args.config, validate_config=not args.no_validate)
        if args.dry_run:
            print_plan(pipe)
            return 0
        if args.log_file is None:
            _add_log_file(pipe.paths.get_report_path("console_log.txt"))
        pipe.run()
    except FileNotFoundError as e:
        logger.error(str(e))
        logger.error("Hint: check path spelling and that the file exists.")
        return 2
    except ValueError as e:
        logger.error(str(e))
        return 3
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
