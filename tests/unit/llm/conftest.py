"""
Shared fixtures for the generation pipeline tests.
"""

import json

import pytest

from blueprintforge.llm.health_monitor import HealthMonitor, reset_health_monitor
from llm_fakes import FakeClock, questions_document


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monitor(clock):
    return HealthMonitor(clock=clock)


@pytest.fixture(autouse=True)
def _reset_process_monitor():
    reset_health_monitor()
    yield
    reset_health_monitor()


@pytest.fixture
def questions_json():
    return json.dumps(questions_document())
