from enum import Enum


class TaskState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


class GenerationType(str, Enum):
    VIDEO = "video"
    IMAGE = "image"
