"""
Exception types raised by the post-processing core.

Fatal conditions subclass ``ValueError`` / ``FileNotFoundError`` so the CLI
maps them to the same exit codes as any other configuration or missing-file
problem.
"""


class ConfigurationError(ValueError):
    """Invalid or inconsistent configuration; aborts the run."""


class AccuracyUndefinedError(ValueError):
    """Accuracy requested for a subject without any visible-target trials."""

    def __init__(self, subject):
        super().__init__(
            f"Accuracy undefined for {subject}: no visible-target trials found"
        )
        self.subject = subject


class SubjectNotFoundError(FileNotFoundError):
    """The signal store has no recording for the requested subject."""

    def __init__(self, subject, path=None):
        msg = f"No recording found for {subject}"
        if path is not None:
            msg += f" (expected at {path})"
        super().__init__(msg)
        self.subject = subject
        self.path = path


class MissingArtifactError(FileNotFoundError):
    """A step configured to reload its output found nothing to reload."""


class TrialMetadataError(ValueError):
    """A recording lacks the per-epoch behavioural metadata the core needs."""
