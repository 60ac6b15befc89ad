"""Vulture whitelist: references that appear unused but are called dynamically.

Vulture scans for unreachable code.  Items listed here are known false
positives: entry points invoked by setuptools, pytest fixtures consumed
via dependency injection, store methods reached only through the
sidecar's handler table, etc.

Usage:
    vulture cryptodash tests vulture_whitelist.py
"""

# ── Entry points (called by setuptools console_scripts, not imported) ──
from cryptodash.main import main  # noqa: F401

# ── Pytest fixtures (injected by pytest, never called directly) ──
from tests.conftest import alice  # noqa: F401
from tests.conftest import bob  # noqa: F401
from tests.conftest import clock  # noqa: F401
from tests.conftest import engine  # noqa: F401
from tests.conftest import storage  # noqa: F401

# ── Enum members (looked up by value, never by name) ──
from cryptodash.models import ChatbotStatus, FileStatus, Plan

ChatbotStatus.INACTIVE  # noqa: B018
FileStatus.FAILED  # noqa: B018
Plan.PRO  # noqa: B018
