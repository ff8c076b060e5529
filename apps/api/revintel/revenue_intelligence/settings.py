"""Scoring settings with per-field fallback to the built-in defaults.

Stored documents predate this service and may use either ``snake_case`` or
``camelCase`` keys; both are accepted when resolving.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


Number = int | float

DEFAULT_STAGE_WEIGHTS: dict[str, Number] = {
    "new": -10,
    "Draft / Deal Created": -10,
    "Lead": -10,
    "Qualified": 0,
    "Initial Validation": 2,
    "Manager Approval": 4,
    "Finance Approval": 6,
    "Legal Review": 8,
    "Executive Approval": 10,
    "Sent for Signature": 14,
    "Proposal": 10,
    "Negotiation": 15,
    "Submitted for Review": 6,
    "Approved / Ready for Signature": 12,
    "Contract Signed / Closed Won": 0,
    "Closed Won": 0,
    "Closed Lost": 0,
}


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True)


class DealAgeSettings(_Section):
    warn_days: Number = 60
    aging_days: Number = 90
    stale_days: Number = 180
    warn_impact: Number = -3
    aging_impact: Number = -8
    stale_impact: Number = -15


class ActivitySettings(_Section):
    hot_days: Number = 7
    warm_days: Number = 14
    cool_days: Number = 21
    cold_days: Number = 30
    hot_impact: Number = 10
    warm_impact: Number = 5
    cool_impact: Number = -6
    cold_impact: Number = -12


class AccountSettings(_Section):
    mature_days: Number = 365
    new_days: Number = 30
    mature_impact: Number = 8
    new_impact: Number = -5


class StageDurationSettings(_Section):
    warn_days: Number = 30
    stuck_days: Number = 60
    warn_impact: Number = -5
    stuck_impact: Number = -10


class CloseDateSettings(_Section):
    overdue_impact: Number = -20
    closing_soon_days: Number = 7
    closing_soon_impact: Number = 12
    closing_soon_warm_days: Number = 14
    closing_soon_warm_impact: Number = 8


class StalePanelSettings(_Section):
    no_activity_days: Number = 30
    stuck_in_stage_days: Number = 60


class ScoringSettings(BaseModel):
    stage_weights: dict[str, Number] = Field(default_factory=lambda: dict(DEFAULT_STAGE_WEIGHTS))
    deal_age: DealAgeSettings = Field(default_factory=DealAgeSettings)
    activity: ActivitySettings = Field(default_factory=ActivitySettings)
    account: AccountSettings = Field(default_factory=AccountSettings)
    stage_duration: StageDurationSettings = Field(default_factory=StageDurationSettings)
    close_date: CloseDateSettings = Field(default_factory=CloseDateSettings)
    stale_panel: StalePanelSettings = Field(default_factory=StalePanelSettings)


_SECTIONS: dict[str, type[_Section]] = {
    "deal_age": DealAgeSettings,
    "activity": ActivitySettings,
    "account": AccountSettings,
    "stage_duration": StageDurationSettings,
    "close_date": CloseDateSettings,
    "stale_panel": StalePanelSettings,
}


def default_settings() -> ScoringSettings:
    return ScoringSettings()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _lookup(raw: Mapping[str, Any], name: str) -> Any:
    if name in raw:
        return raw[name]
    return raw.get(_camel(name))


def _safe_number(value: Any, fallback: Number) -> Number:
    # bool is an int subclass but never a valid setting
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if not math.isfinite(value):
        return fallback
    return value


def _resolve_section(raw: Mapping[str, Any], name: str, model: type[_Section]) -> _Section:
    section = _lookup(raw, name)
    if not isinstance(section, Mapping):
        return model()
    defaults = model()
    values = {
        field: _safe_number(_lookup(section, field), getattr(defaults, field))
        for field in model.model_fields
    }
    return model(**values)


def _resolve_stage_weights(raw: Mapping[str, Any]) -> dict[str, Number]:
    weights: dict[str, Number] = dict(DEFAULT_STAGE_WEIGHTS)
    stored = _lookup(raw, "stage_weights")
    if not isinstance(stored, Mapping):
        return weights
    for stage, value in stored.items():
        if not isinstance(stage, str):
            continue
        weights[stage] = _safe_number(value, weights.get(stage, 0))
    return weights


def resolve_settings(raw: Any) -> ScoringSettings:
    """Merge a stored settings document over the defaults.

    Never raises: anything that is not a mapping resolves to the defaults, and
    any field that is missing or not a finite number keeps its default value.
    Stage weights are merged so stages absent from the document keep theirs.
    """
    if not isinstance(raw, Mapping):
        return default_settings()
    sections = {name: _resolve_section(raw, name, model) for name, model in _SECTIONS.items()}
    return ScoringSettings(stage_weights=_resolve_stage_weights(raw), **sections)
