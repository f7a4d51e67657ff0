"""
Lifecycle of a single reconciliation task.
"""

from enum import Enum


class TaskState(Enum):
    NOT_CHECKED = "not-checked"
    LINK_MISSING = "link-missing"
    LINKED = "linked"
    MERGED = "merged"
    # linked pair already agreed, nothing written
    IN_STEP = "in-step"
    WATERMARK_UPDATED = "watermark-updated"
    SKIPPED = "skipped"
    ABORTED = "aborted"
