"""Module entrypoint for ``python -m review_pipeline``."""

from __future__ import annotations

from review_pipeline.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
