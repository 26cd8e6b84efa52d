"""Command-line entry points for book assignment workflows.

The main CLIs are exposed via modules in this package, e.g.:

- ``python -m bookops.cli.run_assignment``
- ``python -m bookops.cli.tune_weights``
"""

__all__ = ["run_assignment", "calculate_thresholds", "tune_weights", "suggest_rebalancing"]
