from pydantic import BaseModel, Field


class ReadRequest(BaseModel):
    message_id: str = ""
    # Fallback only; the post's own channel wins when it can be resolved
    channel_id: str = ""
    timestamp: int | None = Field(None, description="Epoch milliseconds; defaults to now")


class ReadResponse(BaseModel):
    status: str = "ok"
    message_id: str
    channel_id: str
    readers: list[str] = []


class ReadEventResponse(BaseModel):
    message_id: str
    user_id: str
    channel_id: str
    timestamp: int

    model_config = {"from_attributes": True}


class ChannelReadResponse(BaseModel):
    channel_id: str
    user_id: str
    last_post_id: str
    last_seen_at: int

    model_config = {"from_attributes": True}


class ReadersResponse(BaseModel):
    user_ids: list[str]


class MessageReadersResponse(BaseModel):
    message_id: str
    seen_by: list[str]


class ConfigResponse(BaseModel):
    enable: bool
    visibility_threshold_ms: int
    retention_days: int
    log_level: str

    model_config = {"from_attributes": True}
