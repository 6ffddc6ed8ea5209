"""Error taxonomy for the context stack.

Validation errors are caller mistakes: raised synchronously, never retried,
and raised before anything is written.  StorageUnavailable is the only
error produced by the backend itself, after the retry budget is spent.
"""

from __future__ import annotations


class StackMemoryError(Exception):
    """Base class for every error raised by stackmemory."""


class ValidationError(StackMemoryError):
    """Raised when a call is rejected because of its arguments or state."""


class InvalidParent(ValidationError):
    """Parent frame does not exist or is already closed."""

    def __init__(self, parent_frame_id: str, reason: str) -> None:
        super().__init__(f"Invalid parent frame {parent_frame_id}: {reason}")
        self.parent_frame_id = parent_frame_id
        self.reason = reason


class DepthExceeded(ValidationError):
    """Opening the frame would exceed the configured stack depth."""

    def __init__(self, depth: int, max_depth: int) -> None:
        super().__init__(f"Frame depth {depth} exceeds maximum stack depth {max_depth}")
        self.depth = depth
        self.max_depth = max_depth


class NotFound(ValidationError):
    """Referenced frame or anchor does not exist."""

    def __init__(self, kind: str, ident: str) -> None:
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class AlreadyClosed(ValidationError):
    """Frame was closed before."""

    def __init__(self, frame_id: str) -> None:
        super().__init__(f"Frame already closed: {frame_id}")
        self.frame_id = frame_id


class OpenChildren(ValidationError):
    """Frame still has active child frames."""

    def __init__(self, frame_id: str, child_ids: list[str]) -> None:
        super().__init__(
            f"Frame {frame_id} has {len(child_ids)} active child frame(s): "
            + ", ".join(child_ids)
        )
        self.frame_id = frame_id
        self.child_ids = child_ids


class FrameClosed(ValidationError):
    """Write targeted a frame that is no longer active."""

    def __init__(self, frame_id: str) -> None:
        super().__init__(f"Frame is closed: {frame_id}")
        self.frame_id = frame_id


class StorageUnavailable(StackMemoryError):
    """Database stayed busy or locked after all retries."""
