#!/usr/bin/env python3
"""CLI entrypoint for reviewing extracted canon."""

from __future__ import annotations

import sys
from pathlib import Path

# Make the repository root importable when run as a script
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.curation.review_interface import run  # noqa: E402
from src.utils.logging_setup import setup_logging  # noqa: E402


def main() -> None:
    """Launch the review interface."""
    setup_logging()
    run()


if __name__ == "__main__":
    main()
