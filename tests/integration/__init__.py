"""
review-pipeline — integration test package

File: tests/integration/__init__.py

Purpose
- Test package marker for CLI and end-to-end review flows.

Functional requirements
- Must not touch the network; ``--network`` is only exercised with the HTTP resolver replaced.
"""
