from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from fastapi import Request
from loguru import logger

from fasbit.errors import AccessDeniedError, NotFoundError, StorageError
from fasbit.services.auth_service import AuthService
from fasbit.utils.files import read_file
from fasbit.utils.media_paths import MEDIA_TOP_LEVEL, mime_for, resolve_media_path
from fasbit.utils.types import Purpose

ParticipantCheck = Callable[[int, str], Awaitable[bool]]
AvatarLookup = Callable[[int], Awaitable[Optional[str]]]

# chat/<uploader>/<shard>/<file>, avatars/<uploader>/<file>
_EXPECTED_DEPTH = {
    MEDIA_TOP_LEVEL[Purpose.CHAT]: 4,
    MEDIA_TOP_LEVEL[Purpose.AVATAR]: 3,
}


@dataclass(frozen=True)
class MediaContent:
    data: bytes
    mime: str


class MediaService:
    def __init__(self, media_root: Path, auth: AuthService):
        self.media_root = media_root
        self.auth = auth

    async def read_media(self, relative_path: str, token: str, is_participant: ParticipantCheck) -> MediaContent:
        try:
            full_path, parts = resolve_media_path(self.media_root, relative_path)
        except ValueError as e:
            logger.warning("Rejected media path {!r}: {}", relative_path, e)
            raise AccessDeniedError()

        if len(parts) != _EXPECTED_DEPTH[parts[0]] or not (parts[1].isascii() and parts[1].isdigit()):
            raise AccessDeniedError()

        requester_id = self.auth.verify_token(token)
        owner_id = int(parts[1])

        if parts[0] == MEDIA_TOP_LEVEL[Purpose.CHAT] and requester_id != owner_id:
            if not await is_participant(requester_id, relative_path):
                logger.info("User {} denied access to {}", requester_id, relative_path)
                raise AccessDeniedError()

        try:
            data = await read_file(full_path)
        except OSError as e:
            logger.error("Media file unreadable after access check: {} ({})", full_path, e)
            raise StorageError("Failed to fetch media.") from e

        return MediaContent(data=data, mime=mime_for(full_path.name))

    async def read_latest_avatar(self, user_id: int, token: str, find_latest: AvatarLookup) -> MediaContent:
        """Newest avatar of ``user_id``; any authenticated user may read it."""
        self.auth.verify_token(token)

        relative_path = await find_latest(user_id)
        if relative_path is None:
            raise NotFoundError("Avatar not found.")

        try:
            full_path, _ = resolve_media_path(self.media_root, relative_path)
        except ValueError as e:
            logger.error("Recorded avatar path {!r} for user {} is invalid: {}", relative_path, user_id, e)
            raise StorageError("Failed to fetch avatar.") from e

        try:
            data = await read_file(full_path)
        except FileNotFoundError:
            logger.error("Avatar file missing on disk: {}", full_path)
            raise NotFoundError("Avatar file not found.")
        except OSError as e:
            logger.error("Avatar file unreadable: {} ({})", full_path, e)
            raise StorageError("Failed to fetch avatar.") from e

        return MediaContent(data=data, mime=mime_for(full_path.name))


def get_media_service(request: Request) -> MediaService:
    return request.app.state.media_service
