from enum import StrEnum


class Purpose(StrEnum):
    CHAT = "chat"
    AVATAR = "avatar"


class SessionState(StrEnum):
    OPEN = "open"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.DONE, SessionState.FAILED)
