from .checkpoint import Checkpoint, CheckpointStore
from .pagination import category_delay, has_next_page, jittered_delay

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "category_delay",
    "has_next_page",
    "jittered_delay",
]
