from fastapi import APIRouter, Depends, Query

from readreceipts.api.deps import get_current_user_id, get_service
from readreceipts.schemas.receipt import (
    ChannelReadResponse,
    MessageReadersResponse,
    ReadersResponse,
    ReadEventResponse,
    ReadRequest,
    ReadResponse,
)
from readreceipts.services.receipt_service import ReceiptService

router = APIRouter(tags=["receipts"])


@router.post("/read", response_model=ReadResponse)
async def mark_read(
    body: ReadRequest,
    user_id: str = Depends(get_current_user_id),
    service: ReceiptService = Depends(get_service),
) -> ReadResponse:
    """Record that the requesting user has seen a message."""
    result = await service.mark_read(
        body.message_id,
        user_id,
        channel_id=body.channel_id,
        timestamp=body.timestamp,
    )
    return ReadResponse(message_id=body.message_id, channel_id=result.channel_id, readers=result.readers)


@router.get("/receipts", response_model=list[ReadEventResponse])
async def list_receipts(
    channel_id: str = Query(default=""),
    since: int = Query(default=0, ge=0, description="Epoch ms lower bound"),
    message_id: str = Query(default=""),
    user_id: str = Depends(get_current_user_id),
    service: ReceiptService = Depends(get_service),
) -> list[ReadEventResponse]:
    events = service.channel_receipts(channel_id, since=since, message_id=message_id)
    return [ReadEventResponse.model_validate(ev) for ev in events]


@router.get("/channel/{channel_id}/readers", response_model=ReadersResponse)
def channel_readers(
    channel_id: str,
    since: int | None = Query(default=None, ge=0),
    post_id: str | None = Query(default=None, alias="postID"),
    user_id: str = Depends(get_current_user_id),
    service: ReceiptService = Depends(get_service),
) -> ReadersResponse:
    """Users (other than the requester) caught up since a time or a post."""
    if post_id:
        user_ids = service.readers_since_post(channel_id, post_id, user_id)
    else:
        user_ids = service.readers_since(channel_id, since or 0, user_id)
    return ReadersResponse(user_ids=user_ids)


@router.get("/channel/{channel_id}/reads", response_model=list[ChannelReadResponse])
async def channel_reads(
    channel_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ReceiptService = Depends(get_service),
) -> list[ChannelReadResponse]:
    return [ChannelReadResponse.model_validate(read) for read in service.channel_reads(channel_id)]


@router.get("/message/{message_id}/readers", response_model=MessageReadersResponse)
async def message_readers(
    message_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ReceiptService = Depends(get_service),
) -> MessageReadersResponse:
    return MessageReadersResponse(message_id=message_id, seen_by=service.message_readers(message_id))
