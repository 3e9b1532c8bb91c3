from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from fasbit.db.media import is_participant, latest_avatar
from fasbit.db.session import get_db
from fasbit.services.media_service import MediaService, get_media_service

router = APIRouter(tags=["media"])


@router.get("/media")
async def get_media(
        path: str = Query(""),
        token: str = Query(""),
        db: AsyncSession = Depends(get_db),
        media: MediaService = Depends(get_media_service),
):
    async def participant(user_id: int, relative_path: str) -> bool:
        return await is_participant(db, user_id, relative_path)

    content = await media.read_media(path, token, participant)

    return Response(content=content.data, media_type=content.mime)


@router.get("/media/avatar/{user_id}")
async def get_avatar(
        user_id: int,
        token: str = Query(""),
        db: AsyncSession = Depends(get_db),
        media: MediaService = Depends(get_media_service),
):
    async def find_latest(owner_id: int):
        avatar = await latest_avatar(db, owner_id)
        return avatar.relative_path if avatar is not None else None

    content = await media.read_latest_avatar(user_id, token, find_latest)

    return Response(content=content.data, media_type=content.mime)
