import random

import pytest

from orgchart_backend.flow_manager import FlowManager
from orgchart_core.graph import FlowGraph
from orgchart_core.persistence import FlowStore
from orgchart_core.scheduler import ManualScheduler


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "flow.json"


@pytest.fixture
def store(store_path, scheduler):
    return FlowStore(store_path, scheduler)


@pytest.fixture
def manager(scheduler, store):
    return FlowManager(scheduler=scheduler, store=store, rng=random.Random(7))


@pytest.fixture
def graph():
    return FlowGraph()
