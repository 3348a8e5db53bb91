# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Worker selection for a step.

Precedence, first hit wins:
    1. step.worker_override
    2. flow.worker_preferences[action.role]  (search / analysis)
    3. flow.action_workers[action], then the engine table
       action_workers[flow.id][action]
    4. flow.worker_preferences["primary"]
    5. default_worker
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from flowline.config import EngineConfig
from flowline.types import ActionKind

if TYPE_CHECKING:
    from flowline.flow.models import Flow, FlowStep

logger = logging.getLogger(__name__)

__all__ = ("CapabilitySelector",)

PRIMARY_ROLE = "primary"


class CapabilitySelector:
    """Deterministic step -> worker name mapping. Holds no per-run state."""

    def __init__(
        self,
        default_worker: str = "default",
        action_workers: Mapping[str, Mapping[ActionKind | str, str]] | None = None,
    ):
        self.default_worker = default_worker
        self._action_workers: dict[str, dict[ActionKind, str]] = {
            flow_id: {ActionKind(a): worker for a, worker in table.items()}
            for flow_id, table in (action_workers or {}).items()
        }

    @classmethod
    def from_config(cls, config: EngineConfig) -> CapabilitySelector:
        return cls(config.default_worker, config.action_workers)

    def select(self, step: FlowStep, flow: Flow) -> str:
        action = ActionKind(step.action)

        if step.worker_override:
            return self._picked(step, "override", step.worker_override)

        role = action.role
        if role is not None and flow.worker_preferences.get(role):
            return self._picked(step, f"role:{role}", flow.worker_preferences[role])

        worker = flow.action_workers.get(action)
        if worker:
            return self._picked(step, "flow action table", worker)

        worker = self._action_workers.get(flow.id, {}).get(action)
        if worker:
            return self._picked(step, "engine action table", worker)

        worker = flow.worker_preferences.get(PRIMARY_ROLE)
        if worker:
            return self._picked(step, "primary", worker)

        return self._picked(step, "default", self.default_worker)

    def _picked(self, step: FlowStep, rule: str, worker: str) -> str:
        action = ActionKind(step.action).value
        logger.debug(f"Step '{step.id}' ({action}) -> worker '{worker}' [{rule}]")
        return worker

    def __repr__(self) -> str:
        return (
            f"CapabilitySelector(default_worker={self.default_worker!r}, "
            f"flows={sorted(self._action_workers)})"
        )
