"""Models module for Pydantic schemas.

This module exposes the inbound host message models.
"""

from models.schemas import (
    InboundMessage,
    StartBuildIterationMessage,
    StartFeatureSurveyMessage,
    StartResearchMessage,
    StopWorkflowMessage,
    WorkflowRunStatus,
    parse_host_message,
)

__all__ = [
    "InboundMessage",
    "StartBuildIterationMessage",
    "StartFeatureSurveyMessage",
    "StartResearchMessage",
    "StopWorkflowMessage",
    "WorkflowRunStatus",
    "parse_host_message",
]
