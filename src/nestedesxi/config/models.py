# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/config/models.py

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


class _Model(BaseModel):
    # YAML keys follow the kickstart template (camelCase / squashed names),
    # attributes stay snake_case.
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class VCenter(_Model):
    hostname: str                      # vcenter fqdn or ip
    username: str
    password: str
    datacenter: str
    resource_pool: str = Field(alias="resourcepool")
    folder: str = ""                   # relative to the datacenter vm folder
    insecure: bool = True              # skip TLS verification


class Environment(_Model):
    vcenter: VCenter
    kickstart_server: HttpUrl = Field(alias="kickstartserver")
    boot_portgroup: str = Field(alias="bootportgroup")

    @property
    def kickstart_url(self) -> str:
        return str(self.kickstart_server).rstrip("/")


class EsxiInfo(_Model):
    """
    Per-host template shared by every nested ESXi in the fleet.
    """
    replica: int = Field(ge=1)
    start_ip: str
    netmask: str
    gateway: str
    name_prefix: str                   # name{n} or name{n,fixed=w}
    domain: str = ""
    password: str
    nameserver: str
    vlanid: int = 0
    keyboard: str = "US Default"
    isofilename: str
    not_vm_pg_create: bool = Field(default=False, alias="notvmpgcreate")
    cli: List[str] = Field(default_factory=list)


class Cpu(_Model):
    core: int = Field(ge=1)
    cores_per_socket: int = Field(default=1, ge=1, alias="coreperscket")


class Memory(_Model):
    memory_gb: int = Field(ge=1, alias="memoryGB")


class Storage(_Model):
    datastore: str
    capacity_gb: int = Field(ge=1, alias="capacityGB")


class BootOption(_Model):
    firmware: Literal["bios", "efi", "http-efi"] = "efi"
    secure_boot: bool = Field(default=False, alias="secureboot")


class VmParameter(_Model):
    cpu: Cpu
    memory: Memory
    networks: List[str] = Field(min_length=1)      # portgroup names (vss and vds)
    storages: List[Storage] = Field(min_length=1)
    boot_option: BootOption = Field(default_factory=BootOption, alias="bootoption")


class FleetConfig(_Model):
    environment: Environment
    esxi_info: EsxiInfo = Field(alias="esxiInfo")
    vm_parameter: VmParameter = Field(alias="vmparameter")
