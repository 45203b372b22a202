from readreceipts.models.channel_read import ChannelRead, ChannelReadData
from readreceipts.models.read_event import ReadEvent, ReadEventData

__all__ = ["ChannelRead", "ChannelReadData", "ReadEvent", "ReadEventData"]
