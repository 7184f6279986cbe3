"""Session context - the current user's identity."""

from dataclasses import dataclass

from .diary.errors import ValidationFailed

__all__ = ["SessionContext"]


@dataclass(frozen=True)
class SessionContext:
    """Identifies the logged-in user.

    The user id namespaces the activity store and addresses the persisted
    snapshot. A new context is created on every login; nothing outlives it.
    """

    user_id: str

    def __post_init__(self) -> None:
        if not isinstance(self.user_id, str) or not self.user_id.strip():
            raise ValidationFailed("Please enter a username!")
        object.__setattr__(self, "user_id", self.user_id.strip())

    @property
    def key(self) -> str:
        """Snapshot key for this session."""
        return self.user_id
