import pytest
import requests

from nestedesxi.errors import ConfigError, InstallerError
from nestedesxi.installer.client import (
    InstallerClient,
    RequestPayload,
    guest_id_for_version,
    mac_path,
)


def _payload(mac="00:50:56:aa:bb:cc"):
    return RequestPayload(
        macaddress=mac,
        password="VMware1!",
        hostname="esxi01.lab.local",
        ip="10.0.0.50",
        netmask="255.255.255.0",
        gateway="10.0.0.1",
        nameserver="10.0.0.1",
        vlanid=10,
        keyboard="US Default",
        isofilename="esxi8.iso",
        cli=["vim-cmd hostsvc/enable_ssh"],
    )


@pytest.mark.parametrize(
    "version, guest",
    [
        ("6.0.0", "vmkernel6Guest"),
        ("6.5.0", "vmkernel65Guest"),
        ("6.7.0", "vmkernel65Guest"),
        ("7.0.3", "vmkernel7Guest"),
        ("8.0.2", "vmkernel7Guest"),
    ],
)
def test_guest_id_for_version(version, guest):
    assert guest_id_for_version(version) == guest


def test_guest_id_from_catalog(kickstart):
    kickstart.versions = {"esxi67.iso": "6.7.0", "esxi8.iso": "8.0.2"}
    client = InstallerClient("http://ks.lab.local:8000/")

    assert client.guest_id("esxi67.iso") == "vmkernel65Guest"
    assert kickstart.requests[0][:2] == ("GET", "http://ks.lab.local:8000/esxi-versions")


def test_unknown_iso_is_a_config_error(kickstart):
    with pytest.raises(ConfigError):
        InstallerClient("http://ks.lab.local:8000").guest_id("missing.iso")


def test_register_posts_payload(kickstart):
    InstallerClient("http://ks.lab.local:8000").register(_payload())

    (method, url, body), = kickstart.calls("POST")
    assert url == "http://ks.lab.local:8000/ks"
    assert body["macaddress"] == "00:50:56:aa:bb:cc"
    assert body["hostname"] == "esxi01.lab.local"
    assert body["ip"] == "10.0.0.50"
    assert body["vlanid"] == 10
    assert body["cli"] == ["vim-cmd hostsvc/enable_ssh"]
    assert set(body) == {
        "macaddress", "password", "hostname", "ip", "netmask", "gateway",
        "nameserver", "vlanid", "keyboard", "isofilename", "cli", "notvmpgcreate",
    }


def test_deregister_uses_dashed_mac(kickstart):
    InstallerClient("http://ks.lab.local:8000").deregister(_payload())

    (method, url, body), = kickstart.calls("DELETE")
    assert url == "http://ks.lab.local:8000/ks/00-50-56-aa-bb-cc"
    assert body is None


def test_non_2xx_raises_installer_error(kickstart):
    kickstart.status[("POST", "/ks")] = 500
    with pytest.raises(InstallerError):
        InstallerClient("http://ks.lab.local:8000").register(_payload())


def test_transport_error_raises_installer_error(monkeypatch):
    import nestedesxi.installer.client as mod

    def boom(*a, **k):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(mod.requests, "request", boom)
    with pytest.raises(InstallerError, match="refused"):
        InstallerClient("http://ks.lab.local:8000").esxi_versions()


def test_mac_path():
    assert mac_path("00:50:56:aa:bb:cc") == "00-50-56-aa-bb-cc"
