# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/errors.py

from __future__ import annotations

from typing import Optional


class LnfleetError(RuntimeError):
    """
    Base class for every orchestrator failure.

    Carries the offending host (if any) and the stage at which the
    failure happened so the CLI can report "<host>: <stage>: <message>".
    """

    def __init__(
        self,
        message: str,
        *,
        host: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.host = host
        self.stage = stage

    def __str__(self) -> str:
        prefix = ""
        if self.host:
            prefix += f"[{self.host}] "
        if self.stage:
            prefix += f"{self.stage}: "
        return prefix + self.message


# ------------------------------------------------------------------------------
# Configuration (always local, raised before any remote call)
# ------------------------------------------------------------------------------

class ConfigError(LnfleetError):
    pass


class NoNetworkError(ConfigError):
    pass


class MissingGatewayError(ConfigError):
    pass


class NoDisksError(ConfigError):
    pass


class DuplicateHostError(ConfigError):
    pass


class UnknownRoleError(ConfigError):
    pass


class UnresolvablePeerError(ConfigError):
    pass


class InvalidFieldError(ConfigError):
    pass


class ScheduleOverlapError(ConfigError):
    pass


# ------------------------------------------------------------------------------
# Runtime
# ------------------------------------------------------------------------------

class SecretError(LnfleetError):
    """Certificate or key material is missing or unusable."""


class RemoteError(LnfleetError):
    """Connection, authentication or remote command failure."""


class ProvisionError(LnfleetError):
    """The remote OS install step failed."""


class ReadinessTimeoutError(LnfleetError):
    pass


class DriftMismatchError(LnfleetError):
    pass


class RollbackUnavailableError(LnfleetError):
    pass
