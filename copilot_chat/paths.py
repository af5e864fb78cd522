"""
Location of the files the client keeps between runs.

The cached GitHub token (``token.json``) and the user settings
(``settings.json``) live in the ``Asset/`` folder next to ``main.py``,
regardless of the current working directory.  Nothing is written there by
import.
"""

import os

# Project root = the directory that contains main.py
_PROJECT_ROOT: str = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

#: Absolute path to the ``Asset/`` folder.
ASSET_DIR: str = os.path.join(_PROJECT_ROOT, "Asset")


def asset_path(filename: str) -> str:
    """Return the absolute path for *filename* inside the Asset folder."""
    return os.path.join(ASSET_DIR, filename)

