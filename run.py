#!/usr/bin/env python3
"""
Entry point for the SolScalp exit desk.
Wraps solscalp/cli.py after loading local dotenv files.
"""
from solscalp.config.dotenv_loader import load_dotenv_files

# Explicit dotenv loading for local/dev. In prod this is a no-op.
load_dotenv_files()

from solscalp.cli import app  # noqa: E402

if __name__ == "__main__":
    app()
