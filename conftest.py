"""
Root conftest for the run metrics test suite.

Resets process-wide state (clock, config cache) around every test so tests
can inject a SimulatedClock or point RUN_METRICS_CONFIG_DIR elsewhere
without leaking into each other.
"""

import pytest

from CONFIG.config_loader import clear_config_cache
from RUN_METRICS.common.clock import reset_clock


@pytest.fixture(autouse=True)
def _reset_global_state():
    reset_clock()
    clear_config_cache()
    yield
    reset_clock()
    clear_config_cache()
