from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from src.relay.application.fields import (
    FieldShape,
    encode_text,
    encode_timestamp,
    field_attachment,
    field_bool,
    field_link,
    field_text,
    field_timestamp,
)
from src.relay.domain.models import (
    GenerationType,
    LinkValue,
    RecordSchema,
    ResultUrls,
    Task,
    TaskState,
    UrlSlot,
)

_ANNOTATION_SPLIT = re.compile(r"[(（\[【]")


def parse_model_name(raw: str, schema: RecordSchema) -> str:
    """Strip a trailing human annotation such as ``（竖屏10秒）`` off a model cell."""
    text = raw.strip()
    if not text:
        return schema.default_model
    match = re.match(schema.model_pattern, text, flags=re.IGNORECASE)
    if match:
        return match.group(1)
    head = _ANNOTATION_SPLIT.split(text, maxsplit=1)[0].strip()
    return head or schema.default_model


def parse_task(record: dict[str, Any], schema: RecordSchema | None = None) -> Task:
    """Normalize one raw store record into a :class:`Task`.

    Never raises for missing cells: an absent prompt comes back as an empty
    string and it is up to the caller to reject it.
    """
    schema = schema or RecordSchema()
    fields = record.get("fields") or {}

    model_display = field_text(fields.get(schema.model_field)).strip() or schema.default_model
    generation_type = (
        schema.type_for_label(field_text(fields.get(schema.generation_type_field)).strip())
        or GenerationType.VIDEO
    )

    status = schema.status_for_label(field_text(fields.get(schema.status_field)).strip())
    if status is None:
        generated = field_bool(fields.get(schema.generated_flag_field))
        status = TaskState.SUCCESS if generated else TaskState.PENDING

    primary_field, fallback_field = schema.video_url_field, schema.image_url_field
    if generation_type is GenerationType.IMAGE:
        primary_field, fallback_field = fallback_field, primary_field
    result_urls = ResultUrls(
        primary_url=field_link(fields.get(primary_field)) or field_link(fields.get(fallback_field)),
        watermark_free_url=field_link(fields.get(schema.watermark_free_url_field)),
        mirror_url=(
            field_link(fields.get(schema.mirror_url_field)) if schema.mirror_url_field else None
        ),
    )

    return Task(
        id=str(record.get("record_id") or record.get("id") or ""),
        prompt=field_text(fields.get(schema.prompt_field)).strip(),
        character=field_text(fields.get(schema.character_field)).strip() or None,
        reference_image=field_attachment(fields.get(schema.reference_image_field)),
        model=parse_model_name(model_display, schema),
        model_display=model_display,
        generation_type=generation_type,
        status=status,
        result_urls=result_urls,
        error=field_text(fields.get(schema.error_field)).strip() or None,
        generated_at=field_timestamp(fields.get(schema.generated_at_field)),
    )


def _primary_field(schema: RecordSchema, generation_type: GenerationType) -> tuple[str, str]:
    if generation_type is GenerationType.IMAGE:
        return schema.image_url_field, schema.image_link_text
    return schema.video_url_field, schema.video_link_text


def url_fields(
    schema: RecordSchema, generation_type: GenerationType, result_urls: ResultUrls
) -> dict[str, LinkValue]:
    targets = {
        UrlSlot.PRIMARY: _primary_field(schema, generation_type),
        UrlSlot.WATERMARK_FREE: (schema.watermark_free_url_field, schema.watermark_free_link_text),
    }
    if schema.mirror_url_field:
        targets[UrlSlot.MIRROR] = (schema.mirror_url_field, schema.mirror_link_text)
    fields: dict[str, LinkValue] = {}
    for slot, url in result_urls.filled().items():
        if slot in targets:
            name, text = targets[slot]
            fields[name] = LinkValue(link=url, text=text)
    if not schema.mirror_url_field and result_urls.mirror_url:
        fields[schema.video_url_field] = LinkValue(
            link=result_urls.mirror_url, text=schema.video_link_text
        )
    return fields


def build_status_fields(
    schema: RecordSchema,
    state: TaskState,
    *,
    generation_type: GenerationType = GenerationType.VIDEO,
    result_urls: ResultUrls | None = None,
    error: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Field payload that moves a record into ``state``.

    A success payload always carries at least one URL so the status and the
    result columns cannot disagree after the write.
    """
    fields: dict[str, Any] = {
        schema.status_field: schema.status_labels[state],
        schema.generated_flag_field: state is TaskState.SUCCESS,
    }
    if state is TaskState.SUCCESS:
        if result_urls is None or not result_urls.any():
            raise ValueError("A successful status write needs at least one result URL")
        fields.update(url_fields(schema, generation_type, result_urls))
        fields[schema.generated_at_field] = encode_timestamp(now or datetime.now(timezone.utc))
        fields[schema.error_field] = ""
    elif state is TaskState.FAILED:
        fields[schema.error_field] = error or "unknown error"
    elif state is TaskState.IN_PROGRESS:
        fields[schema.error_field] = ""
    return fields


def serialize_task(
    task: Task, schema: RecordSchema | None = None, shape: FieldShape = FieldShape.TEXT
) -> dict[str, Any]:
    """Render ``task`` as the raw record the store would return for it."""
    schema = schema or RecordSchema()
    fields: dict[str, Any] = {
        schema.prompt_field: encode_text(task.prompt, shape),
        schema.model_field: encode_text(task.model_display, shape),
        schema.generation_type_field: encode_text(schema.type_labels[task.generation_type], shape),
        schema.status_field: encode_text(schema.status_labels[task.status], shape),
        schema.generated_flag_field: task.is_generated,
    }
    if task.character:
        fields[schema.character_field] = encode_text(task.character, shape)
    if task.reference_image:
        fields[schema.reference_image_field] = (
            [{"url": task.reference_image}] if shape is not FieldShape.TEXT else task.reference_image
        )
    for name, value in url_fields(schema, task.generation_type, task.result_urls).items():
        fields[name] = value.model_dump() if shape is not FieldShape.TEXT else value.link
    if task.error:
        fields[schema.error_field] = encode_text(task.error, shape)
    if task.generated_at:
        fields[schema.generated_at_field] = encode_timestamp(task.generated_at)
    return {"record_id": task.id, "fields": fields}
