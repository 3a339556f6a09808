"""
Shared fixtures for the candle engine tests.
"""

import logging

import pytest

from dataflow.candle_aggregation.aggregator import CandleAggregator
from tests.helpers.fakes import FakeClock, FakeNatsClient, Recorder


def pytest_collection_modifyitems(config, items):
    """Mark everything under tests/integration as an integration test"""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def setup_logging(caplog):
    """Capture engine logs for every test"""
    caplog.set_level(logging.DEBUG, logger="dataflow")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def aggregator(clock):
    agg = CandleAggregator(clock=clock)
    yield agg
    agg.clear_all()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def nats_client():
    return FakeNatsClient()
