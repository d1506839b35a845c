"""CLI entry point for Educator Match."""

from __future__ import annotations

from educator_match.cli import main

if __name__ == "__main__":
    main()
