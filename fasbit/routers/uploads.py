from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette import status

from fasbit.db.media import record_media_file
from fasbit.db.session import get_db
from fasbit.services.upload_service import StoredFile, UploadService, get_upload_service
from fasbit.utils.types import Purpose

router = APIRouter(tags=["uploads"])

SHA256_HEX = r"^[0-9a-fA-F]{64}$"


class ChunkStartIn(BaseModel):
    client_id: str = Field(alias="clientId", min_length=1)
    timestamp: int
    signature_base64: str = Field(alias="signatureBase64", min_length=1)
    original_name: str = Field(alias="originalName", min_length=1)
    total_chunks: int = Field(alias="totalChunks", gt=0)
    file_sha256: str = Field(alias="fileSha256", pattern=SHA256_HEX)
    purpose: Purpose
    uploader_id: int = Field(alias="uploaderId", gt=0)
    chunk_size: Optional[int] = Field(None, alias="chunkSize", gt=0)


class ChunkIn(BaseModel):
    upload_id: str = Field(alias="uploadId", min_length=1)
    chunk_index: int = Field(alias="chunkIndex")
    chunk_sha256: str = Field(alias="chunkSha256", pattern=SHA256_HEX)
    chunk_data_base64: str = Field(alias="chunkDataBase64")


class ChunkCompleteIn(BaseModel):
    upload_id: str = Field(alias="uploadId", min_length=1)


class UploadStatusOut(BaseModel):
    upload_id: str = Field(serialization_alias="uploadId")
    state: str
    total_chunks: int = Field(serialization_alias="totalChunks")
    received: List[int]


@router.post("/upload-chunk-start", status_code=status.HTTP_200_OK)
async def upload_chunk_start(
        body: ChunkStartIn,
        uploads: UploadService = Depends(get_upload_service),
):
    session = await uploads.start(
        client_id=body.client_id,
        timestamp=body.timestamp,
        signature_b64=body.signature_base64,
        original_name=body.original_name,
        total_chunks=body.total_chunks,
        file_sha256=body.file_sha256,
        purpose=body.purpose,
        uploader_id=body.uploader_id,
        chunk_size=body.chunk_size,
    )

    return {"uploadId": session.upload_id}


@router.post("/upload-chunk", status_code=status.HTTP_200_OK)
async def upload_chunk(
        body: ChunkIn,
        uploads: UploadService = Depends(get_upload_service),
):
    received = await uploads.write_chunk(
        body.upload_id,
        body.chunk_index,
        body.chunk_sha256,
        body.chunk_data_base64,
    )

    return {"status": "ok", "received": received}


def _recorder(db: AsyncSession):
    async def record(stored: StoredFile) -> None:
        await record_media_file(
            db,
            owner_id=stored.uploader_id,
            purpose=str(stored.purpose),
            relative_path=stored.relative_path,
            original_name=stored.original_name,
            mime_type=stored.mime,
            size_bytes=stored.size,
            content_hash=stored.content_hash,
        )

    return record


def _stored_out(stored: StoredFile) -> dict:
    return {
        "status": "ok",
        "file": {
            "relativePath": stored.relative_path,
            "size": stored.size,
            "mime": stored.mime,
            "originalName": stored.original_name,
        },
    }


@router.post("/upload", status_code=status.HTTP_200_OK)
async def upload(
        photo: UploadFile = File(...),
        client_id: str = Form(..., alias="clientId", min_length=1),
        timestamp: int = Form(...),
        signature_base64: str = Form(..., alias="signatureBase64", min_length=1),
        purpose: Purpose = Form(...),
        uploader_id: int = Form(..., alias="uploaderId", gt=0),

        db: AsyncSession = Depends(get_db),
        uploads: UploadService = Depends(get_upload_service),
):
    stored = await uploads.store_file(
        client_id=client_id,
        timestamp=timestamp,
        signature_b64=signature_base64,
        purpose=purpose,
        uploader_id=uploader_id,
        file=photo,
        on_stored=_recorder(db),
    )

    return _stored_out(stored)


@router.post("/upload-chunk-complete", status_code=status.HTTP_200_OK)
async def upload_chunk_complete(
        body: ChunkCompleteIn,
        db: AsyncSession = Depends(get_db),
        uploads: UploadService = Depends(get_upload_service),
):
    stored = await uploads.complete(body.upload_id, on_stored=_recorder(db))

    return _stored_out(stored)


@router.get("/upload-chunk-status", response_model=UploadStatusOut, response_model_by_alias=True)
async def upload_chunk_status(
        upload_id: str = Query(..., alias="uploadId"),
        uploads: UploadService = Depends(get_upload_service),
):
    session = await uploads.status(upload_id)

    return UploadStatusOut(
        upload_id=session.upload_id,
        state=str(session.state),
        total_chunks=session.total_chunks,
        received=sorted(session.received),
    )
