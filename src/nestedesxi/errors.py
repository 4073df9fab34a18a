# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/errors.py


class ProvisionError(RuntimeError):
    """Base class for nested ESXi provisioning failures."""


class ConfigError(ProvisionError):
    """Raised for malformed configuration (name template, ISO filename, addresses)."""


class ValidationError(ProvisionError):
    """Raised when the gateway and the start address are not on the same subnet."""


class NotFoundError(ProvisionError):
    """Raised when a datacenter, folder, resource pool or network cannot be resolved."""


class BackendError(ProvisionError):
    """Raised when a vCenter call or task fails."""


class InstallerError(ProvisionError):
    """Raised when the kickstart server rejects a request or cannot be reached."""


class CancellationError(ProvisionError):
    """Raised when the run is cancelled while a worker is waiting."""
