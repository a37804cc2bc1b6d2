from pydantic import BaseModel, Field

from src.relay.domain.models.task_state import GenerationType, TaskState


class RecordSchema(BaseModel):
    """Field names and localized labels of the external task table."""

    prompt_field: str = "提示词"
    character_field: str = "角色"
    model_field: str = "模型"
    generation_type_field: str = "生成类型"
    reference_image_field: str = "Sora图片"
    status_field: str = "生成状态"
    generated_flag_field: str = "是否已生成"
    video_url_field: str = "视频URL"
    image_url_field: str = "图片URL"
    watermark_free_url_field: str = "无水印视频URL"
    # Unset: the mirror URL takes the video URL column, ahead of the primary URL.
    mirror_url_field: str | None = None
    error_field: str = "错误信息"
    generated_at_field: str = "生成时间"

    status_labels: dict[TaskState, str] = Field(
        default_factory=lambda: {
            TaskState.PENDING: "待生成",
            TaskState.IN_PROGRESS: "生成中",
            TaskState.SUCCESS: "成功",
            TaskState.FAILED: "失败",
        }
    )
    type_labels: dict[GenerationType, str] = Field(
        default_factory=lambda: {
            GenerationType.VIDEO: "视频生成",
            GenerationType.IMAGE: "图片生成",
        }
    )
    video_link_text: str = "查看视频"
    image_link_text: str = "查看图片"
    watermark_free_link_text: str = "无水印视频"
    mirror_link_text: str = "云盘视频"

    default_model: str = "sora-video-portrait-10s"
    model_pattern: str = r"^(sora-[a-z0-9-]+)"

    def status_for_label(self, label: str) -> TaskState | None:
        for state, text in self.status_labels.items():
            if text == label or state.value == label:
                return state
        return None

    def type_for_label(self, label: str) -> GenerationType | None:
        for kind, text in self.type_labels.items():
            if text == label or kind.value == label:
                return kind
        return None
