from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel, Field

from tripsync.domain.models import ConflictItem, Dataset


class NoConflicts(BaseModel):
    kind: Literal["no_conflicts"] = "no_conflicts"
    merged: Dataset
    summary: dict = Field(default_factory=dict)


class ConflictsFound(BaseModel):
    kind: Literal["conflicts_found"] = "conflicts_found"
    handle: str
    conflicts: list[ConflictItem]
    summary: dict = Field(default_factory=dict)


class Merged(BaseModel):
    kind: Literal["merged"] = "merged"
    merged: Dataset
    summary: dict = Field(default_factory=dict)


class Failed(BaseModel):
    kind: Literal["failed"] = "failed"
    code: str
    reason: str
    summary: dict = Field(default_factory=dict)


SyncOutcome = Union[NoConflicts, ConflictsFound, Failed]
MergeOutcome = Union[Merged, Failed]
