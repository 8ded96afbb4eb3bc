"""pyrelay CLI bootstrap."""

from __future__ import annotations

from pyrelay.cli import app

if __name__ == "__main__":
    app()
