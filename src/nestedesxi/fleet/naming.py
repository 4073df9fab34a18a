# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/fleet/naming.py

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

from nestedesxi.errors import ConfigError

_TEMPLATE = re.compile(r"^(?P<prefix>[^{}]*)\{(?P<body>[^{}]*)\}(?P<suffix>[^{}]*)$")


@dataclass(frozen=True)
class NameTemplate:
    """
    Parsed ``prefix{start}`` / ``prefix{start,fixed=width}`` template.

    ``esxi{1,fixed=3}`` yields esxi001, esxi002, ...
    """
    prefix: str
    start: int
    width: int = 0
    suffix: str = ""

    def hostname(self, index: int) -> str:
        n = self.start + index
        digits = str(n).zfill(self.width) if self.width else str(n)
        return f"{self.prefix}{digits}{self.suffix}"

    def hostnames(self, replica: int) -> List[str]:
        return [self.hostname(i) for i in range(replica)]


def parse_name_template(template: str) -> NameTemplate:
    m = _TEMPLATE.match(template.strip())
    if not m:
        raise ConfigError(
            f"name_prefix {template!r} must look like name{{n}} or name{{n,fixed=w}}"
        )

    parts = [p.strip() for p in m.group("body").split(",")]
    if len(parts) > 2:
        raise ConfigError(f"name_prefix {template!r} has too many options")

    try:
        start = int(parts[0])
    except ValueError:
        raise ConfigError(
            f"could not convert {parts[0]!r} to integer, check name_prefix {template!r}"
        ) from None

    width = 0
    if len(parts) == 2:
        key, sep, value = parts[1].partition("=")
        if key.strip() != "fixed" or not sep:
            raise ConfigError(
                f"unknown option {parts[1]!r} in name_prefix {template!r}, expected fixed=n"
            )
        try:
            width = int(value.strip())
        except ValueError:
            raise ConfigError(
                f"could not convert fixed={value.strip()!r} to integer, check name_prefix {template!r}"
            ) from None
        if width < 0:
            raise ConfigError(f"fixed width must not be negative in {template!r}")

    return NameTemplate(
        prefix=m.group("prefix"),
        start=start,
        width=width,
        suffix=m.group("suffix"),
    )


def fqdn(hostname: str, domain: str) -> str:
    domain = domain.strip().strip(".")
    return f"{hostname}.{domain}" if domain else hostname
