"""FastAPI app factory.

Endpoints are thin wrappers over the pure validation and graph analysis modules;
nothing here holds state between requests.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from agent_workflows import __version__
from agent_workflows.server.config import ServerSettings
from agent_workflows.server.models import AnalysisModel, FieldValidationResponse, GraphResponse
from agent_workflows.workflow.analysis import analyze
from agent_workflows.workflow.graph import build_graph, detect_workflow_mode
from agent_workflows.workflow.models import Template
from agent_workflows.workflow.validation import (
    ValidationResult,
    validate_field,
    validate_payload,
)

logger = logging.getLogger(__name__)


def _parse_template(payload: dict[str, Any]) -> Template:
    try:
        return Template.model_validate(payload)
    except ValidationError:
        result = validate_payload(payload)
        raise HTTPException(
            status_code=422,
            detail=[issue.model_dump(mode="json") for issue in result.errors],
        ) from None


def create_app() -> FastAPI:
    settings = ServerSettings()

    app = FastAPI(
        title="Agent Workflows",
        version=__version__,
        description="Validation and graph analysis for multi-agent workflow templates.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/templates/validate", response_model=ValidationResult)
    def validate(payload: dict[str, Any]) -> ValidationResult:
        result = validate_payload(payload)
        logger.info(
            "Template validated",
            extra={
                "is_valid": result.is_valid,
                "errors": len(result.errors),
                "warnings": len(result.warnings),
            },
        )
        return result

    @app.post("/api/templates/validate-field", response_model=FieldValidationResponse)
    def validate_one_field(
        payload: dict[str, Any],
        field: str = Query(..., min_length=1, description="Field path prefix, e.g. agents[0]"),
    ) -> FieldValidationResponse:
        errors = validate_field(_parse_template(payload), field)
        return FieldValidationResponse(field=field, is_valid=not errors, errors=errors)

    @app.post("/api/templates/graph", response_model=GraphResponse)
    def graph(payload: dict[str, Any]) -> GraphResponse:
        template = _parse_template(payload)
        built = build_graph(template.agents, template.workflow)
        structure = built.to_structure()
        analysis = analyze(built, template.agents)
        return GraphResponse(
            graph=structure,
            detected_mode=detect_workflow_mode(structure.edges, structure.exit_points),
            nodes_by_level=analysis.nodes_by_level(),
            analysis=AnalysisModel.model_validate(analysis.to_json()),
        )

    return app
