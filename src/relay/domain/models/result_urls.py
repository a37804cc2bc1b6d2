from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UrlSlot(str, Enum):
    PRIMARY = "primary"
    WATERMARK_FREE = "watermark_free"
    MIRROR = "mirror"


class ResultUrls(BaseModel):
    """Independent result channels a single generation run may populate."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    primary_url: str | None = Field(default=None, description="Main media URL.")
    watermark_free_url: str | None = Field(
        default=None, description="Video URL served by a watermark-free CDN."
    )
    mirror_url: str | None = Field(
        default=None, description="Copy of the media on a cloud drive."
    )

    def get(self, slot: UrlSlot) -> str | None:
        return getattr(self, f"{slot.value}_url")

    def set_if_absent(self, slot: UrlSlot, url: str) -> bool:
        """Store ``url`` in ``slot`` unless the slot already holds one."""
        if not url or self.get(slot):
            return False
        setattr(self, f"{slot.value}_url", url)
        return True

    def any(self) -> bool:
        return any(self.get(slot) for slot in UrlSlot)

    def filled(self) -> dict[UrlSlot, str]:
        return {slot: url for slot in UrlSlot if (url := self.get(slot))}
