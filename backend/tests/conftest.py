"""
Test configuration for the quote wizard backend.

backend/ is put on sys.path so ``from app...`` and ``from tests...`` resolve
whether pytest runs from the repository root or from backend/.
"""

import os
import sys
from pathlib import Path

import pytest

_backend_dir = Path(__file__).parent.parent

# The API tests create many sessions from one client address
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

if str(_backend_dir) not in sys.path:
    sys.path.insert(0, str(_backend_dir))

from app.quote_wizard.config import WizardSettings  # noqa: E402
from tests.fakes import WizardHarness  # noqa: E402


@pytest.fixture
def settings() -> WizardSettings:
    """Default settings, independent of the developer's environment."""
    return WizardSettings()


@pytest.fixture
def harness(settings) -> WizardHarness:
    return WizardHarness(settings=settings)
