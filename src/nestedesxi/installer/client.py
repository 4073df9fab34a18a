# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/installer/client.py

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List

import requests

from nestedesxi.errors import ConfigError, InstallerError

log = logging.getLogger("nestedesxi")

GUEST_ID_60 = "vmkernel6Guest"
GUEST_ID_65 = "vmkernel65Guest"
GUEST_ID_LATEST = "vmkernel7Guest"


@dataclass
class RequestPayload:
    """
    Kickstart registration record. Field names are the JSON keys the
    kickstart server expects.
    """
    macaddress: str
    password: str
    hostname: str
    ip: str
    netmask: str
    gateway: str
    nameserver: str
    vlanid: int
    keyboard: str
    isofilename: str
    cli: List[str] = field(default_factory=list)
    notvmpgcreate: bool = False

    def to_json(self) -> Dict:
        return asdict(self)


def guest_id_for_version(version: str) -> str:
    if version == "6.0.0":
        return GUEST_ID_60
    if version in ("6.5.0", "6.7.0"):
        return GUEST_ID_65
    return GUEST_ID_LATEST


def mac_path(macaddress: str) -> str:
    return macaddress.replace(":", "-")


class InstallerClient:
    """
    Client for the nested-esxi kickstart server API:
      - GET    /esxi-versions      uploaded ISO -> ESXi version
      - POST   /ks                 register a host for network boot install
      - DELETE /ks/<mac-dashes>    deregister after the install finished
    """

    def __init__(self, base_url: str, *, timeout: float = 30.0):
        self.base_url = str(base_url).rstrip("/")
        self.timeout = timeout

    # -----------------------
    # HTTP helpers
    # -----------------------
    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            r = requests.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise InstallerError(f"failed to send {method} {url}: {exc}") from exc
        log.debug("%s %s -> %s", method, url, r.status_code)
        return r

    # -----------------------
    # ISO catalog
    # -----------------------
    def esxi_versions(self) -> Dict[str, str]:
        r = self._request("GET", "/esxi-versions")
        if not r.ok:
            raise InstallerError(f"failed to list ESXi versions: {r.status_code} {r.text}")
        try:
            body = r.json()
        except ValueError as exc:
            raise InstallerError(f"failed to decode /esxi-versions response: {exc}") from exc
        uploaded = body.get("uploaded_esxi_list") if isinstance(body, dict) else None
        if not isinstance(uploaded, dict):
            raise InstallerError("/esxi-versions response has no uploaded_esxi_list")
        return uploaded

    def guest_id(self, isofilename: str) -> str:
        """
        Map the configured ISO to a vSphere guest id via its ESXi version.
        """
        versions = self.esxi_versions()
        version = versions.get(isofilename)
        if not version:
            raise ConfigError(f"ISO file {isofilename!r} could not be found on the kickstart server")
        guest = guest_id_for_version(version)
        log.debug("ISO %s is ESXi %s -> guest id %s", isofilename, version, guest)
        return guest

    # -----------------------
    # Kickstart registration
    # -----------------------
    def register(self, payload: RequestPayload) -> None:
        r = self._request("POST", "/ks", json=payload.to_json())
        log.info(
            "Sent POST request to kickstart config for %s. Response: %s",
            payload.hostname, r.status_code,
        )
        if not r.ok:
            raise InstallerError(
                f"kickstart registration for {payload.hostname} failed: {r.status_code} {r.text}"
            )

    def deregister(self, payload: RequestPayload) -> None:
        r = self._request("DELETE", f"/ks/{mac_path(payload.macaddress)}")
        log.info(
            "Sent DELETE request to kickstart config for %s. Response: %s",
            payload.hostname, r.status_code,
        )
        if not r.ok:
            raise InstallerError(
                f"kickstart deregistration for {payload.hostname} failed: {r.status_code} {r.text}"
            )
