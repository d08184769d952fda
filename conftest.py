"""
Root pytest configuration.

Loaded before test collection so src is on the Python path for all imports.
"""

import sys
from pathlib import Path

import pytest

src_path = Path(__file__).parent / "src"
src_str = str(src_path.absolute())

if src_str in sys.path:
    sys.path.remove(src_str)
sys.path.insert(0, src_str)


@pytest.fixture(autouse=True)
def _reset_service_registry():
    """Reset the service registry between tests for isolation."""
    yield
    from core.service_registry import services
    services.reset_all()
