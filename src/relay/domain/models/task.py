from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from src.relay.domain.models.result_urls import ResultUrls
from src.relay.domain.models.task_state import GenerationType, TaskState


class Task(BaseModel):
    """Canonical view of one task record; serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(alias="recordId", description="External record identifier.")
    prompt: str = Field(default="", description="Generation input text.")
    character: str | None = Field(default=None, description="Optional role description.")
    reference_image: str | None = Field(
        default=None, description="Reference image URL or store file token."
    )
    model: str = Field(description="Literal model identifier sent upstream.")
    model_display: str = Field(description="Model cell text as entered in the store.")
    generation_type: GenerationType = Field(default=GenerationType.VIDEO)
    status: TaskState = Field(default=TaskState.PENDING)
    result_urls: ResultUrls = Field(default_factory=ResultUrls)
    error: str | None = Field(default=None, description="Last failure message.")
    generated_at: datetime | None = Field(default=None, description="Completion time.")

    @computed_field(alias="isGenerated")  # type: ignore[prop-decorator]
    @property
    def is_generated(self) -> bool:
        return self.status == TaskState.SUCCESS

    @computed_field(alias="videoUrl")  # type: ignore[prop-decorator]
    @property
    def video_url(self) -> str | None:
        if self.generation_type is GenerationType.VIDEO:
            return self.result_urls.primary_url
        return None

    @computed_field(alias="imageUrl")  # type: ignore[prop-decorator]
    @property
    def image_url(self) -> str | None:
        if self.generation_type is GenerationType.IMAGE:
            return self.result_urls.primary_url
        return None
