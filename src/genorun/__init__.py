"""genorun - orchestration engine for containerized genome analysis jobs.

Accepts analysis jobs, runs each as a supervised external tool invocation
behind a bounded worker pool, and turns the tool's tabular output into
typed region records.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
