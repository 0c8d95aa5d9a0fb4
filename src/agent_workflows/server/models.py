"""Pydantic models for the REST server."""

from __future__ import annotations

from pydantic import BaseModel, Field

from agent_workflows.workflow.models import GraphStructure
from agent_workflows.workflow.validation import ValidationIssue


class FieldValidationResponse(BaseModel):
    field: str
    is_valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)


class CriticalPathModel(BaseModel):
    nodes: list[str] = Field(default_factory=list)
    length_minutes: float = 0.0


class AnalysisModel(BaseModel):
    has_cycle: bool
    cycle_nodes: list[str] = Field(default_factory=list)
    levels: dict[str, int] = Field(default_factory=dict)
    critical_path: CriticalPathModel = Field(default_factory=CriticalPathModel)
    unreachable: list[str] = Field(default_factory=list)
    execution_order: list[str] = Field(default_factory=list)


class GraphResponse(BaseModel):
    graph: GraphStructure
    detected_mode: str
    nodes_by_level: list[list[str]] = Field(default_factory=list)
    analysis: AnalysisModel
