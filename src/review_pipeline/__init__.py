"""
review-pipeline — package root.

File: src/review_pipeline/__init__.py

Purpose
- Submission review core: a check registry and executor that compile document
  reports, plus a declarative workflow state machine gated on those reports.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
