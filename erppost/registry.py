# File: erppost/registry.py
"""Global mapping of step name -> step class, filled by ``erppost.steps``."""

STEP_REGISTRY = {}
