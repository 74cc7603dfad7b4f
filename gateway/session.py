"""
Context-key resolution.

A conversation key partitions the message log. In ``shared`` mode every
participant in a channel writes into one history keyed by the channel; in
``per-participant`` mode each participant gets their own history, keyed by
the channel plus the participant id.
"""

from enum import Enum

CONTEXT_KEY_SEPARATOR = ":"


class ContextMode(str, Enum):
    SHARED = "shared"
    PER_PARTICIPANT = "per-participant"

    @classmethod
    def parse(cls, value) -> "ContextMode":
        """Map a stored mode string to a ContextMode, defaulting to SHARED.

        Also accepts the older "channel" / "user" spellings.
        """
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        if normalized in ("per-participant", "per_participant", "user"):
            return cls.PER_PARTICIPANT
        return cls.SHARED


def build_context_key(base_id: str, mode, participant_id: str) -> str:
    """Return the store partition key for a channel, mode and participant."""
    if ContextMode.parse(mode) is ContextMode.PER_PARTICIPANT:
        return f"{base_id}{CONTEXT_KEY_SEPARATOR}{participant_id}"
    return base_id
