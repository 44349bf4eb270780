"""
Pytest configuration and shared fixtures for Archgraph test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset global state before each test to ensure isolation."""
    from core.stores import set_catalog
    from infrastructure.config import set_config
    from infrastructure.event_bus import reset_event_bus
    from infrastructure.logger import reset_logger

    reset_event_bus()
    reset_logger()
    set_config(None)
    set_catalog(None)

    yield

    set_catalog(None)
    set_config(None)
    reset_logger()
    reset_event_bus()


@pytest.fixture
def catalog():
    """Provide a fresh, empty Catalog on the global bus and journal."""
    from core.stores import Catalog
    return Catalog()


@pytest.fixture
def sync(catalog):
    """Provide a RelationshipSynchronizer over the fresh catalog."""
    from core.sync import RelationshipSynchronizer
    return RelationshipSynchronizer(catalog)


@pytest.fixture
def scenario_catalog(catalog, sync):
    """
    Two disconnected chains plus an orphan:

        P1 Alice -> U1 Review invoice -> T1 Excel   -> DM2 Invoice
        P3 Carol -> U2 Onboard client -> T2 CRM     -> DM1 Customer
        P2 Bob (no use cases)
    """
    p1 = sync.create_persona(id="P1", name="Alice", description="Accounts payable clerk")
    p2 = sync.create_persona(id="P2", name="Bob", description="Sales lead")
    p3 = sync.create_persona(id="P3", name="Carol", description="Account manager")

    t1 = sync.create_tool(id="T1", name="Excel", description="Spreadsheets")
    t2 = sync.create_tool(id="T2", name="CRM", description="Client records")

    dm1 = sync.create_data_model(id="DM1", name="Customer", description="A paying client")
    dm2 = sync.create_data_model(id="DM2", name="Invoice", description="A bill")

    u1 = sync.create_use_case(id="U1", action="Review invoice", goal="Pay on time",
                              persona="P1", tool_ids=["T1"])
    u2 = sync.create_use_case(id="U2", action="Onboard client", goal="Start billing",
                              persona="P3", tool_ids=["T2"])

    sync.add_implementation("T1", "DM2")
    sync.add_implementation("T2", "DM1")

    return catalog, {
        "P1": p1, "P2": p2, "P3": p3,
        "T1": t1, "T2": t2,
        "DM1": dm1, "DM2": dm2,
        "U1": u1, "U2": u2,
    }


@pytest.fixture
def view(scenario_catalog, sync):
    """FlowGraphView over the scenario catalog with a controllable clock."""
    from viz.core import FlowGraphView

    catalog, _ = scenario_catalog
    clock = {"now": 1000.0}
    view = FlowGraphView(catalog, sync=sync, clock=lambda: clock["now"])
    view.test_clock = clock
    return view
