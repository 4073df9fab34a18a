import pytest

from conftest import make_config
from nestedesxi.errors import ValidationError
from nestedesxi.fleet.planner import HostIdentity, plan
from nestedesxi.observers.dispatcher import EventBus
from nestedesxi.observers.events import PlanComputed, PlanFailed


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)


def test_plan_builds_identities_and_emits_event():
    cap = Capture()
    hosts = plan(make_config().esxi_info, bus=EventBus([cap]))

    assert hosts == [
        HostIdentity(hostname="esxi01", fqdn="esxi01.lab.local", ip="10.0.0.50", index=0),
        HostIdentity(hostname="esxi02", fqdn="esxi02.lab.local", ip="10.0.0.51", index=1),
    ]
    pc = next(e for e in cap.events if isinstance(e, PlanComputed))
    assert pc.hosts == ["esxi01.lab.local=10.0.0.50", "esxi02.lab.local=10.0.0.51"]


def test_plan_subnet_mismatch_emits_failure():
    cap = Capture()
    with pytest.raises(ValidationError):
        plan(make_config(gateway="10.0.1.1").esxi_info, bus=EventBus([cap]))
    assert any(isinstance(e, PlanFailed) for e in cap.events)
