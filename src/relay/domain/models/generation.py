from __future__ import annotations

from pydantic import BaseModel, Field

from src.relay.domain.models.result_urls import ResultUrls


class LinkValue(BaseModel):
    """URL cell value: the store renders ``text`` and opens ``link``."""

    link: str
    text: str


class GenerationOutcome(BaseModel):
    result_urls: ResultUrls = Field(default_factory=ResultUrls)
    transcript: str = Field(default="", description="Text accumulated from the response.")


class TaskRunResult(BaseModel):
    task_id: str
    success: bool
    skipped: bool = False
    result_urls: ResultUrls = Field(default_factory=ResultUrls)
    error: str | None = None


class BatchRunResult(BaseModel):
    total: int = 0
    success_count: int = 0
    fail_count: int = 0
    skipped_count: int = 0
    results: list[TaskRunResult] = Field(default_factory=list)
