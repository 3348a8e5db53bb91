# Copyright (c) 2025 - 2026, HaiyangLi <quantocean.li at gmail dot com>
# SPDX-License-Identifier: Apache-2.0

"""Flow definition sources.

A loader supplies `flow_id -> Flow` at startup. The engine only depends on
the FlowLoader protocol; two implementations are provided:

    MappingFlowLoader: in-memory dicts or Flow instances
    DirectoryFlowLoader: *.yaml / *.yml / *.json files in a directory

File layout accepted by DirectoryFlowLoader:

    # one flow per file (id defaults to the file stem)
    name: Market research
    steps: [...]

    # or several flows keyed by id
    flows:
      market_research: {name: ..., steps: [...]}
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import pydantic
import yaml

from flowline.errors import ConfigurationError, FlowValidationError

from .models import Flow

logger = logging.getLogger(__name__)

__all__ = (
    "DirectoryFlowLoader",
    "FlowLoader",
    "MappingFlowLoader",
    "parse_flow",
)

FLOW_FILE_SUFFIXES = (".yaml", ".yml", ".json")


@runtime_checkable
class FlowLoader(Protocol):
    def load_flows(self) -> Mapping[str, Flow]: ...


def parse_flow(data: Flow | Mapping[str, Any], flow_id: str | None = None) -> Flow:
    """Validate raw flow data into a Flow.

    Args:
        data: Flow instance (returned as-is) or raw mapping.
        flow_id: Used when the mapping carries no "id".

    Raises:
        FlowValidationError: On schema errors or dangling step references.
    """
    if isinstance(data, Flow):
        return data
    if not isinstance(data, Mapping):
        raise FlowValidationError(
            f"Flow '{flow_id}' must be a mapping, got {type(data).__name__}",
            details={"flow_id": flow_id},
        )

    payload = dict(data)
    if flow_id is not None:
        payload.setdefault("id", flow_id)

    try:
        return Flow.model_validate(payload)
    except pydantic.ValidationError as e:
        raise FlowValidationError(
            f"Flow '{payload.get('id', flow_id)}' failed validation: {e.error_count()} error(s)",
            details={
                "flow_id": payload.get("id", flow_id),
                "errors": e.errors(include_url=False, include_context=False),
            },
        ) from e


class MappingFlowLoader:
    """Loader over an in-memory mapping of flow id -> definition."""

    def __init__(self, flows: Mapping[str, Flow | Mapping[str, Any]] | None = None):
        self._flows = dict(flows or {})

    def load_flows(self) -> dict[str, Flow]:
        loaded: dict[str, Flow] = {}
        for flow_id, data in self._flows.items():
            flow = parse_flow(data, flow_id)
            loaded[flow.id] = flow
        return loaded

    def __repr__(self) -> str:
        return f"MappingFlowLoader(flows={list(self._flows)})"


class DirectoryFlowLoader:
    """Loader reading flow files from a directory (non-recursive, sorted)."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def load_flows(self) -> dict[str, Flow]:
        """Read and validate every flow file.

        Raises:
            ConfigurationError: Directory missing or a file is unreadable.
            FlowValidationError: A definition is invalid, or two files
                declare the same flow id.
        """
        if not self.directory.is_dir():
            raise ConfigurationError(
                f"Flow directory not found: {self.directory}",
                details={"directory": str(self.directory)},
            )

        loaded: dict[str, Flow] = {}
        for path in sorted(self.directory.iterdir()):
            if path.suffix.lower() not in FLOW_FILE_SUFFIXES or not path.is_file():
                continue
            for flow in self._load_file(path):
                if flow.id in loaded:
                    raise FlowValidationError(
                        f"Duplicate flow id '{flow.id}' in {path.name}",
                        details={"flow_id": flow.id, "file": str(path)},
                    )
                loaded[flow.id] = flow

        logger.debug(f"Loaded {len(loaded)} flow(s) from {self.directory}")
        return loaded

    def _load_file(self, path: Path) -> list[Flow]:
        data = _read_document(path)
        if data is None:
            return []
        if not isinstance(data, Mapping):
            raise FlowValidationError(
                f"Flow file {path.name} must contain a mapping",
                details={"file": str(path)},
            )

        if "flows" in data and "steps" not in data:
            flows = data["flows"]
            if isinstance(flows, Mapping):
                return [parse_flow(body, flow_id) for flow_id, body in flows.items()]
            if isinstance(flows, list):
                return [parse_flow(body) for body in flows]
            raise FlowValidationError(
                f"'flows' in {path.name} must be a mapping or a list",
                details={"file": str(path)},
            )

        return [parse_flow(data, path.stem)]

    def __repr__(self) -> str:
        return f"DirectoryFlowLoader(directory={str(self.directory)!r})"


def _read_document(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read flow file {path}: {e}", details={"file": str(path)}
        ) from e

    try:
        if path.suffix.lower() == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise FlowValidationError(
            f"Cannot parse flow file {path.name}: {e}", details={"file": str(path)}
        ) from e
