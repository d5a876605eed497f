# src/solana_exporter/env.py
from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from solana_exporter.config import default_data_dir

_LOADED = False


def dotenv_candidates(dotenv_path: Optional[str] = None) -> List[Path]:
    """Where a .env file is looked for, in order.

    An explicit path (argument or SOLEX_DOTENV_PATH) is the only candidate.
    Otherwise `.env` in the working directory, then the exporter data directory.
    """
    explicit = dotenv_path or os.environ.get("SOLEX_DOTENV_PATH")
    if explicit:
        return [Path(explicit).expanduser()]
    return [Path.cwd() / ".env", default_data_dir() / ".env"]


def load_dotenv_if_present(dotenv_path: Optional[str] = None) -> Optional[Path]:
    """Load the first existing .env file, at most once per process.

    Variables already in the environment win over the file. Returns the file
    that was loaded, or None.
    """
    global _LOADED
    if _LOADED:
        return None
    _LOADED = True

    for path in dotenv_candidates(dotenv_path):
        if path.is_file():
            load_dotenv(dotenv_path=path, override=False)
            return path
    return None
