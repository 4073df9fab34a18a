import itertools
import threading
import types
from urllib.parse import urlsplit

import pytest

from nestedesxi.config.models import FleetConfig
from nestedesxi.errors import BackendError, NotFoundError
from nestedesxi.vsphere.backend import KeyAllocator, NetworkAdapter, POWERED_OFF, POWERED_ON
from nestedesxi.vsphere.devices import NicSpec

# ----------------- Config -----------------

def make_config(**esxi_overrides) -> FleetConfig:
    esxi = {
        "replica": 2,
        "start_ip": "10.0.0.50",
        "netmask": "255.255.255.0",
        "gateway": "10.0.0.1",
        "name_prefix": "esxi{1,fixed=2}",
        "domain": "lab.local",
        "password": "VMware1!",
        "nameserver": "10.0.0.1",
        "vlanid": 10,
        "keyboard": "US Default",
        "isofilename": "esxi8.iso",
        "notvmpgcreate": True,
        "cli": ["vim-cmd hostsvc/enable_ssh"],
    }
    esxi.update(esxi_overrides)
    return FleetConfig.model_validate({
        "environment": {
            "vcenter": {
                "hostname": "vc.lab.local",
                "username": "administrator@vsphere.local",
                "password": "secret",
                "datacenter": "DC",
                "resourcepool": "Cluster/Resources",
                "folder": "nested",
            },
            "kickstartserver": "http://ks.lab.local:8000",
            "bootportgroup": "pg-boot",
        },
        "esxiInfo": esxi,
        "vmparameter": {
            "cpu": {"core": 4, "coreperscket": 2},
            "memory": {"memoryGB": 16},
            "networks": ["pg-final", "pg-second"],
            "storages": [
                {"datastore": "ds1", "capacityGB": 32},
                {"datastore": "ds1", "capacityGB": 100},
            ],
            "bootoption": {"firmware": "efi", "secureboot": False},
        },
    })


@pytest.fixture
def cfg():
    return make_config()


# ----------------- Fake vCenter -----------------

class FakeTask:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error


class FakeVM:
    def __init__(self, name, spec=None):
        self.name = name
        self.spec = spec
        self.power = POWERED_OFF
        self.adapters = []
        self.ip = None
        self.polls_since_power_on = 0
        self.backings = {}


class FakeVCenter:
    """
    In-memory stand-in for vCenter shared by every FakeBackend (one per
    worker). ``installed_ips`` maps VM name -> IP the guest reports from
    the second poll after each power-on.
    """

    def __init__(self, existing=(), installed_ips=None, networks=("pg-boot", "pg-final", "pg-second")):
        self.lock = threading.Lock()
        self.calls = []
        self.vms = {name: FakeVM(name) for name in existing}
        self.installed_ips = dict(installed_ips or {})
        self.networks = set(networks)
        self.fail_on = {}           # op -> error message
        self.hooks = {}             # op -> callable(vm_name)
        self._macs = itertools.count(1)
        self.connections = 0
        self.closed = 0

    def record(self, op, name=None, **extra):
        with self.lock:
            self.calls.append((op, name, extra))
        if op in self.hooks:
            self.hooks[op](name)

    def ops(self, name=None):
        return [op for op, n, _ in self.calls if name is None or n == name]

    def next_mac(self):
        with self.lock:
            return f"00:50:56:00:00:{next(self._macs):02x}"

    def backend(self):
        return FakeBackend(self)


class FakeBackend:
    def __init__(self, vc: FakeVCenter):
        self.vc = vc
        self.new_key = KeyAllocator()

    def connect(self):
        with self.vc.lock:
            self.vc.connections += 1

    def close(self):
        with self.vc.lock:
            self.vc.closed += 1

    def _check(self, op, name=None):
        self.vc.record(op, name)
        if op in self.vc.fail_on:
            raise BackendError(self.vc.fail_on[op])

    def find_datacenter(self, name):
        return types.SimpleNamespace(name=name)

    def find_folder(self, dc, path):
        return types.SimpleNamespace(name=path)

    def find_resource_pool(self, dc, path):
        return types.SimpleNamespace(name=path)

    def find_network(self, dc, name):
        if name not in self.vc.networks:
            raise NotFoundError(f"network {name!r} not found")
        return types.SimpleNamespace(name=name)

    def network_backing(self, network):
        return f"backing:{network.name}"

    def find_vm(self, dc, name):
        self._check("find_vm", name)
        return self.vc.vms.get(name)

    def create_vm(self, folder, pool, spec):
        self._check("create_vm", spec.name)
        vm = FakeVM(spec.name, spec)
        nics = [d for d in spec.devices if isinstance(d, NicSpec)]
        for i, nic in enumerate(nics):
            vm.adapters.append(
                NetworkAdapter(
                    key=4000 + i,
                    label=f"Network adapter {i + 1}",
                    mac_address=self.vc.next_mac(),
                )
            )
            vm.backings[4000 + i] = nic.backing
        with self.vc.lock:
            self.vc.vms[spec.name] = vm
        return FakeTask(result=vm)

    def power_on(self, vm):
        self._check("power_on", vm.name)
        vm.power = POWERED_ON
        vm.polls_since_power_on = 0
        return FakeTask(result=None)

    def shutdown_guest(self, vm):
        self._check("shutdown_guest", vm.name)
        vm.power = POWERED_OFF
        vm.ip = None

    def reconfigure(self, vm, changes):
        for change in changes:
            self._check(f"reconfigure_{change.operation}", vm.name)
            dev = change.device
            if change.operation == "remove":
                vm.adapters = [a for a in vm.adapters if a.key != dev.key]
            elif change.operation == "add":
                n = len(vm.adapters) + 1
                vm.adapters.append(
                    NetworkAdapter(key=5000 + n, label=f"Network adapter {n}", mac_address=self.vc.next_mac())
                )
                vm.backings[5000 + n] = dev.backing
            elif change.operation == "edit":
                vm.backings[dev.key] = dev.backing
        return FakeTask(result=None)

    def network_adapters(self, vm):
        self._check("network_adapters", vm.name)
        return list(vm.adapters)

    def guest_ip(self, vm):
        self._check("guest_ip", vm.name)
        vm.polls_since_power_on += 1
        if vm.power == POWERED_ON and vm.polls_since_power_on >= 2:
            return self.vc.installed_ips.get(vm.name)
        return None

    def power_state(self, vm):
        self._check("power_state", vm.name)
        return vm.power

    def wait_for_task(self, task, cancel):
        if task.error:
            raise BackendError(task.error)
        return task.result


@pytest.fixture
def vcenter():
    return FakeVCenter(
        installed_ips={
            "esxi01.lab.local": "10.0.0.50",
            "esxi02.lab.local": "10.0.0.51",
        }
    )


# ----------------- Fake kickstart server -----------------

class _Resp:
    def __init__(self, status=200, body=None):
        self.status_code = status
        self._body = body if body is not None else {}
        self.text = str(self._body)

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeKickstart:
    """
    Records requests sent through requests.request and answers like the
    kickstart server API.
    """

    def __init__(self, versions=None):
        self.requests = []
        self.versions = versions if versions is not None else {"esxi8.iso": "8.0.2"}
        self.status = {}            # (method, path-prefix) -> status code
        self.lock = threading.Lock()

    def __call__(self, method, url, timeout=None, **kwargs):
        with self.lock:
            self.requests.append((method, url, kwargs.get("json")))
        path = urlsplit(url).path
        for (m, prefix), code in self.status.items():
            if m == method and path.startswith(prefix):
                return _Resp(code, {"error": "nope"})
        if method == "GET" and path == "/esxi-versions":
            return _Resp(200, {"uploaded_esxi_list": self.versions})
        return _Resp(200, {})

    def calls(self, method):
        return [r for r in self.requests if r[0] == method]


@pytest.fixture
def kickstart(monkeypatch):
    fake = FakeKickstart()
    import nestedesxi.installer.client as mod
    monkeypatch.setattr(mod.requests, "request", fake)
    return fake
