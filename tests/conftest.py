# FILE: tests/conftest.py
"""
Pytest configuration for repokeeper test suite.

Configures:
- pytest-asyncio for async test support
- project root on sys.path so `repokeeper` and `config` import without install
"""
import sys
from pathlib import Path

import pytest

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

pytest_plugins = ["pytest_asyncio"]
