"""Convergence bookkeeping for hardening stages.

Every stage reads the current state of the resources it owns, diffs it
against the desired state and applies only the difference. The records
below capture what was applied so a second run can be shown to be a
no-op.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Change:
    """A single mutation applied to a managed resource."""
    resource: str
    action: str
    detail: Optional[str] = None

    def __str__(self) -> str:
        if self.detail:
            return f"{self.resource}: {self.action} ({self.detail})"
        return f"{self.resource}: {self.action}"


@dataclass
class StageReport:
    """Outcome of one hardening stage.

    Attributes:
        name: Stage name
        changes: Mutations that were applied
        warnings: Tolerated failures, surfaced to the operator
        skipped: True when the stage was disabled or not applicable
    """
    name: str
    changes: list[Change] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def changed(self) -> bool:
        """Check if the stage mutated anything."""
        return bool(self.changes)

    @property
    def ok(self) -> bool:
        """Check if the stage completed without tolerated failures."""
        return not self.warnings

    def record(self, resource: str, action: str, detail: Optional[str] = None) -> None:
        """Record an applied change."""
        self.changes.append(Change(resource, action, detail))

    def warn(self, message: str) -> None:
        """Record a tolerated failure."""
        self.warnings.append(message)

    def summary_line(self) -> str:
        """One-line human summary of the stage outcome."""
        if self.skipped:
            return "skipped"
        parts = [f"{len(self.changes)} change(s)" if self.changes else "no changes"]
        if self.warnings:
            parts.append(f"{len(self.warnings)} warning(s)")
        return ", ".join(parts)


@dataclass
class HardenReport:
    """Aggregate of all stage reports for one run."""
    stages: list[StageReport] = field(default_factory=list)

    def add(self, stage: StageReport) -> StageReport:
        self.stages.append(stage)
        return stage

    def get(self, name: str) -> Optional[StageReport]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    @property
    def changed(self) -> bool:
        return any(stage.changed for stage in self.stages)

    @property
    def ok(self) -> bool:
        return all(stage.ok for stage in self.stages)

    @property
    def warnings(self) -> list[str]:
        return [f"{s.name}: {w}" for s in self.stages for w in s.warnings]
