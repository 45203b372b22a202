# WebSocket event names published to connected clients.
# The read receipt name keeps the "custom_<plugin id>_" prefix clients
# already filter on.

PLUGIN_ID = "mattermost-readreceipts"

READ_RECEIPT = f"custom_{PLUGIN_ID}_read_receipt"
CHANNEL_READERS_UPDATE = "channel_readers_update"
