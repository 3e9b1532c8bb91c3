from typing import Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError as DuplicateRowError
from sqlalchemy.ext.asyncio import AsyncSession

from fasbit.db.models.media_file import MediaFile
from fasbit.db.models.message import Message
from fasbit.utils.types import Purpose


async def is_participant(db: AsyncSession, user_id: int, relative_path: str) -> bool:
    query = (
        sa.select(Message.id)
        .where(
            Message.attachment_path == relative_path,
            sa.or_(Message.sender_id == user_id, Message.recipient_id == user_id),
        )
        .limit(1)
    )

    return await db.scalar(query) is not None


async def get_media_file(db: AsyncSession, relative_path: str) -> Optional[MediaFile]:
    return await db.scalar(sa.select(MediaFile).where(MediaFile.relative_path == relative_path))


async def record_media_file(
        db: AsyncSession,
        owner_id: int,
        purpose: str,
        relative_path: str,
        original_name: str,
        mime_type: str,
        size_bytes: int,
        content_hash: str,
) -> MediaFile:
    existing = await get_media_file(db, relative_path)
    if existing is not None:
        return existing

    media_file = MediaFile(
        owner_id=owner_id,
        purpose=purpose,
        relative_path=relative_path,
        original_name=original_name,
        mime_type=mime_type,
        size_bytes=size_bytes,
        content_hash=content_hash,
    )

    try:
        db.add(media_file)
        await db.commit()

    except DuplicateRowError:
        await db.rollback()
        return await get_media_file(db, relative_path)

    return media_file


async def latest_avatar(db: AsyncSession, user_id: int) -> Optional[MediaFile]:
    query = (
        sa.select(MediaFile)
        .where(MediaFile.owner_id == user_id, MediaFile.purpose == Purpose.AVATAR.value)
        .order_by(MediaFile.created_at.desc(), MediaFile.id.desc())
        .limit(1)
    )

    return await db.scalar(query)
