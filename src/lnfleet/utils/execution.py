# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from dataclasses import dataclass, field
import logging

from ..settings import OrchestratorSettings


@dataclass(frozen=True)
class ExecutionContext:
    """
    controls how commands are executed
    """

    # --debug: stream command output at INFO instead of DEBUG; control flow is unchanged
    debug: bool = False
    settings: OrchestratorSettings = field(default_factory=OrchestratorSettings)

    @property
    def output_level(self) -> int:
        return logging.INFO if self.debug else logging.DEBUG
