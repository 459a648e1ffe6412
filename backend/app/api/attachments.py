"""
File attachments for channel messages.

Files are uploaded first (unattached) and linked to a message when it is
sent. Every read goes through the access check of the channel the file
was uploaded to.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_channel_context, get_current_user
from app.core.logging import storage_logger
from app.db import crud
from app.db.database import get_db
from app.db.models import FileAttachment, User
from app.permissions.constants import Permission
from app.permissions.exceptions import NotFound
from app.permissions.repository import GroupContext, channel_snapshot, load_group_context
from app.services.audit import log_audit
from app.storage import get_storage
from app.storage.local import ALLOWED_MIME_TYPES, MAX_FILE_SIZE

router = APIRouter()


class AttachmentResponse(BaseModel):
    id: int
    channel_id: int
    message_id: Optional[int]
    user_id: int
    filename: str
    file_size: Optional[int]
    mime_type: Optional[str]
    url: str
    created_at: Optional[datetime]


def attachment_to_response(attachment: FileAttachment) -> AttachmentResponse:
    return AttachmentResponse(
        id=attachment.id,
        channel_id=attachment.channel_id,
        message_id=attachment.message_id,
        user_id=attachment.user_id,
        filename=attachment.filename,
        file_size=attachment.file_size,
        mime_type=attachment.mime_type,
        url=get_storage().url_for(attachment.id, attachment.storage_path),
        created_at=attachment.created_at,
    )


async def _load_attachment(
    db: AsyncSession, attachment_id: int, user: User
) -> tuple[FileAttachment, GroupContext]:
    attachment = (
        await db.execute(select(FileAttachment).where(FileAttachment.id == attachment_id))
    ).scalar_one_or_none()
    if attachment is None:
        raise NotFound("Attachment not found")
    channel = await crud.get_channel(db, attachment.channel_id)
    ctx = await load_group_context(db, channel.group_id, user.id) if channel else None
    if ctx is None:
        raise NotFound("Attachment not found")
    ctx.require_channel_access(channel_snapshot(channel))
    return attachment, ctx


@router.post(
    "/channels/{channel_id}/attachments",
    response_model=AttachmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_attachment(
    file: UploadFile = File(...),
    channel_ctx=Depends(get_channel_context),
    db: AsyncSession = Depends(get_db),
):
    """Upload a file to a channel. Link it to a message by passing its id when sending."""
    channel, ctx = channel_ctx
    ctx.require_channel_permission(channel_snapshot(channel), Permission.ATTACH_FILES)

    stored = await get_storage().save(file, channel.id)
    attachment = FileAttachment(
        channel_id=channel.id,
        user_id=ctx.member.user_id,
        filename=stored.filename,
        storage_path=stored.storage_path,
        file_size=stored.size,
        mime_type=stored.mime_type,
    )
    db.add(attachment)
    await db.flush()
    log_audit(
        db,
        "attachment.upload",
        "attachment",
        attachment.id,
        group_id=channel.group_id,
        user_id=ctx.member.user_id,
        meta={"filename": stored.filename, "size": stored.size, "channel_id": channel.id},
    )
    await db.commit()
    await db.refresh(attachment)
    return attachment_to_response(attachment)


@router.get("/attachments/limits")
async def get_upload_limits(user: User = Depends(get_current_user)):
    return {
        "max_file_size_mb": MAX_FILE_SIZE // (1024 * 1024),
        "max_file_size_bytes": MAX_FILE_SIZE,
        "allowed_mime_types": sorted(ALLOWED_MIME_TYPES),
    }


@router.get("/attachments/{attachment_id}", response_model=AttachmentResponse)
async def get_attachment(
    attachment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    attachment, _ = await _load_attachment(db, attachment_id, user)
    return attachment_to_response(attachment)


@router.get("/attachments/{attachment_id}/download")
async def download_attachment(
    attachment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Serve a locally stored file. MinIO files are fetched from their presigned URL instead."""
    attachment, _ = await _load_attachment(db, attachment_id, user)
    storage = get_storage()
    if storage.backend != "local":
        raise HTTPException(status_code=400, detail="Use the attachment url to download this file")

    path = storage.full_path(attachment.storage_path)
    if not path.exists():
        storage_logger.error("File not found on disk", path=attachment.storage_path)
        raise HTTPException(status_code=404, detail="File not found on disk")
    return FileResponse(path=path, filename=attachment.filename, media_type=attachment.mime_type)


@router.delete("/attachments/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_attachment(
    attachment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Uploaders delete their own files; others need MANAGE_MESSAGES."""
    attachment, ctx = await _load_attachment(db, attachment_id, user)
    if attachment.user_id != user.id:
        ctx.require(Permission.MANAGE_MESSAGES)

    try:
        await get_storage().delete(attachment.storage_path)
    except Exception as e:
        storage_logger.warning("Failed to delete stored file", path=attachment.storage_path, error=str(e))

    log_audit(
        db,
        "attachment.delete",
        "attachment",
        attachment.id,
        group_id=ctx.group.id,
        user_id=user.id,
        meta={"filename": attachment.filename, "channel_id": attachment.channel_id},
    )
    await db.delete(attachment)
    await db.commit()
