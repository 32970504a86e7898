"""
Catalog Loader (``repair_config.loader``).

Responsibility
--------------
Loads the YAML workflow catalog and parses it into the frozen
``repair_kernel.domain.workflow`` value objects.  The single public entry
point for runtime use is ``repair_config.get_active_catalog()``; this
module is the tooling underneath it and is also used directly by tests
that need a modified catalog.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on the kernel's domain
types only; nothing in the kernel imports this package.

Invariants enforced
-------------------
* Every canonical state is defined exactly once.
* Edges reference only canonical states; terminal states have no edges.
* Every state is reachable from ``CREATED`` (so ``CANCELLED`` is a real
  outcome) and every non-terminal state has a path to a terminal state.
* Field names (required, editable, documentation, entry timestamp) exist
  on ``JobSheet``.
* Automation effect keys are unique within a state.
* ``compute_checksum`` produces a deterministic SHA-256 hash for catalog
  identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Structural violations  -> ``ValueError`` listing every problem found.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields as dataclass_fields
from datetime import datetime, timedelta
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from repair_kernel.domain.job_sheet import DOCUMENTATION_FIELDS, JobSheet
from repair_kernel.domain.workflow import (
    TERMINAL_STATES,
    AutomationEffect,
    Channel,
    DocumentationRequirement,
    EffectKind,
    EscalationPolicy,
    GenerateDocumentEffect,
    JobState,
    NotifyEffect,
    ScheduleEffect,
    ScoreQualityEffect,
    StateCatalog,
    StateDefinition,
    WorkflowSettings,
)

_JOB_FIELDS = {f.name: f for f in dataclass_fields(JobSheet)}
_TIMESTAMP_FIELDS = frozenset(
    name for name, f in _JOB_FIELDS.items() if "datetime" in str(f.type)
)
RECIPIENTS = frozenset({"customer", "technician"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_settings(data: dict[str, Any]) -> WorkflowSettings:
    """Parse ``WorkflowSettings``; omitted keys keep their defaults."""
    defaults = WorkflowSettings()
    threshold = int(data.get("quality_threshold", defaults.quality_threshold))
    if not 0 <= threshold <= 100:
        raise ValueError(f"quality_threshold must be 0-100, got {threshold}")
    return WorkflowSettings(
        quality_threshold=threshold,
        escalation_sweep_interval_seconds=int(
            data.get(
                "escalation_sweep_interval_seconds",
                defaults.escalation_sweep_interval_seconds,
            )
        ),
        escalation_channel=Channel(data.get("escalation_channel", defaults.escalation_channel)),
        escalation_template=data.get("escalation_template", defaults.escalation_template),
        job_number_prefix=data.get("job_number_prefix", defaults.job_number_prefix),
    )


def parse_effect(data: dict[str, Any]) -> AutomationEffect:
    """
    Parse one automation rule.  The effect key is derived from the rule's
    content so that it stays stable across catalog versions.
    """
    kind = EffectKind(data["type"])
    if kind is EffectKind.NOTIFY:
        channel = Channel(data["channel"])
        recipient = data["recipient"]
        if recipient not in RECIPIENTS:
            raise ValueError(f"Unknown notification recipient {recipient!r}")
        return NotifyEffect(
            effect_key=f"notify:{channel.value.lower()}:{data['template']}",
            channel=channel,
            template=data["template"],
            recipient=recipient,
        )
    if kind is EffectKind.SCHEDULE:
        hours = data["delay_hours"]
        return ScheduleEffect(
            effect_key=f"schedule:{data['task']}@{hours}h",
            delay=timedelta(hours=hours),
            task=data["task"],
        )
    if kind is EffectKind.SCORE_QUALITY:
        return ScoreQualityEffect(effect_key="score_quality")
    return GenerateDocumentEffect(
        effect_key=f"document:{data['document']}",
        document=data["document"],
    )


def parse_escalation(data: dict[str, Any] | None) -> EscalationPolicy | None:
    if not data:
        return None
    return EscalationPolicy(
        timeout=timedelta(hours=data["timeout_hours"]),
        role=data["role"],
    )


def parse_documentation(data: dict[str, Any]) -> DocumentationRequirement:
    return DocumentationRequirement(
        field_name=data["field"],
        minimum=int(data.get("minimum", 0)),
        maximum=int(data["maximum"]) if data.get("maximum") is not None else None,
        description=data.get("description", ""),
    )


def parse_state_definition(data: dict[str, Any]) -> StateDefinition:
    """Parse a ``StateDefinition``.  Unknown state ids raise ``ValueError``."""
    return StateDefinition(
        state=JobState(data["id"]),
        name=data["name"],
        description=data.get("description", ""),
        order=int(data["order"]),
        color=data.get("color", ""),
        allowed_next=tuple(JobState(s) for s in data.get("allowed_next") or ()),
        required_fields=tuple(data.get("required_fields") or ()),
        editable_fields=frozenset(data.get("editable_fields") or ()),
        documentation=tuple(
            parse_documentation(d) for d in data.get("documentation") or ()
        ),
        automation=tuple(parse_effect(e) for e in data.get("automation") or ()),
        escalation=parse_escalation(data.get("escalation")),
        entry_timestamp=data.get("entry_timestamp"),
    )


def validate_catalog(states: dict[JobState, StateDefinition]) -> list[str]:
    """Return every structural problem found in ``states``."""
    errors: list[str] = []

    missing = set(JobState) - set(states)
    if missing:
        errors.append(f"missing states: {sorted(s.value for s in missing)}")

    for state, definition in states.items():
        label = state.value
        if state in TERMINAL_STATES:
            if definition.allowed_next:
                errors.append(f"{label}: terminal state must not have successors")
            if definition.escalation is not None:
                errors.append(f"{label}: terminal state must not escalate")
        else:
            if state in definition.allowed_next:
                errors.append(f"{label}: self-transition is not allowed")

        for name in definition.required_fields:
            if name not in _JOB_FIELDS:
                errors.append(f"{label}: unknown required field {name!r}")
        for name in definition.editable_fields:
            if name not in DOCUMENTATION_FIELDS:
                errors.append(f"{label}: field {name!r} is not documentation")
        for requirement in definition.documentation:
            if requirement.field_name not in DOCUMENTATION_FIELDS:
                errors.append(
                    f"{label}: documentation names unknown field {requirement.field_name!r}"
                )
        if (
            definition.entry_timestamp is not None
            and definition.entry_timestamp not in _TIMESTAMP_FIELDS
        ):
            errors.append(
                f"{label}: entry_timestamp {definition.entry_timestamp!r} is not a timestamp"
            )

        keys = [effect.effect_key for effect in definition.automation]
        duplicates = {k for k in keys if keys.count(k) > 1}
        if duplicates:
            errors.append(f"{label}: duplicate effect keys {sorted(duplicates)}")

    if not missing:
        errors.extend(_graph_errors(states))
    return errors


def _reachable(states: dict[JobState, StateDefinition], start: JobState) -> set[JobState]:
    seen = {start}
    frontier = [start]
    while frontier:
        for nxt in states[frontier.pop()].allowed_next:
            if nxt not in seen and nxt in states:
                seen.add(nxt)
                frontier.append(nxt)
    return seen


def _graph_errors(states: dict[JobState, StateDefinition]) -> list[str]:
    errors: list[str] = []
    from_created = _reachable(states, JobState.CREATED)
    for state in states:
        if state not in from_created:
            errors.append(f"{state.value}: not reachable from CREATED")
        elif state not in TERMINAL_STATES and not (
            _reachable(states, state) & TERMINAL_STATES
        ):
            errors.append(f"{state.value}: no path to a terminal state")
    return errors


def build_catalog(data: dict[str, Any]) -> StateCatalog:
    """
    Build a validated ``StateCatalog`` from parsed YAML.

    Raises:
        KeyError: a required key is missing.
        ValueError: unknown ids, duplicate states or structural violations.
    """
    header = data["catalog"]
    states: dict[JobState, StateDefinition] = {}
    for entry in data["states"]:
        definition = parse_state_definition(entry)
        if definition.state in states:
            raise ValueError(f"State {definition.state.value} defined twice")
        states[definition.state] = definition

    errors = validate_catalog(states)
    if errors:
        raise ValueError(
            "Workflow catalog validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    return StateCatalog(
        name=header["name"],
        version=int(header["version"]),
        checksum=compute_checksum(data),
        states=MappingProxyType(states),
        settings=parse_settings(data.get("settings") or {}),
    )


def load_catalog(path: Path) -> StateCatalog:
    """Load and validate the catalog stored at ``path``."""
    return build_catalog(load_yaml_file(path))
