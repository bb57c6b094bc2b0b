"""
Pytest configuration shared by all tests.

This module:
1. Makes the project root importable
2. Points settings at a throwaway data directory before anything reads them
3. Registers custom markers
"""

import os
import sys
import tempfile
from pathlib import Path


# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

# Keep tests away from the real data directory and log file
_test_data_dir = tempfile.mkdtemp(prefix="bibsync-test-")
os.environ.setdefault("DATA_DIR", _test_data_dir)
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("AUTO_SYNC", "false")


# ============================================================================
# Pytest Hooks
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests that talk to real remote services"
    )
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )

