# =============================================================================
# pumpchat-client -- Protocol Constants
# =============================================================================
#
# Engine.IO v4 / socket.io framing as spoken by livechat.pump.fun.
# =============================================================================

ENGINE_IO_VERSION = 4

# -- Endpoints -----------------------------------------------------------------

CHAT_HOST = "livechat.pump.fun"
WS_URL = f"wss://{CHAT_HOST}/socket.io/?EIO={ENGINE_IO_VERSION}&transport=websocket"
MODERATION_URL = (
    f"https://{CHAT_HOST}/chat/moderation/rooms/{{room_id}}/messages/{{key}}/delete"
)

# -- Headers -------------------------------------------------------------------

ORIGIN = "https://pump.fun"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/138.0.0.0 Safari/537.36"
)
ACCEPT_LANGUAGE = "en-US,en;q=0.9"
TOKEN_HEADER = "auth-token"

# -- Defaults ------------------------------------------------------------------

DEFAULT_USERNAME = "anonymous"
DEFAULT_HISTORY_LIMIT = 100
DEFAULT_DELETE_REASON = "TOXIC"

# -- Timing (seconds) ----------------------------------------------------------

CONNECTION_TIMEOUT = 10.0
HEARTBEAT_GRACE = 5.0
HEARTBEAT_MAX_CHECK_INTERVAL = 15.0

# -- Acknowledgments -----------------------------------------------------------

ACK_ID_SLOTS = 10
ACK_STALE_AFTER = 30.0
ACK_SWEEP_INTERVAL = 10.0

# -- Reconnection --------------------------------------------------------------

RECONNECT_BASE_DELAY = 1.0
RECONNECT_MAX_DELAY = 30.0

# -- Moderation retry ----------------------------------------------------------

MODERATION_MAX_RETRIES = 5
MODERATION_BASE_DELAY = 0.5
MODERATION_MAX_DELAY = 30.0
MODERATION_MAX_JITTER = 0.25
MODERATION_TIMEOUT = 10.0

# -- Wire prefixes -------------------------------------------------------------

PREFIX_OPEN = "0"
PREFIX_PING = "2"
PREFIX_PONG = "3"
PREFIX_CONNECT = "40"
PREFIX_EVENT = "42"
PREFIX_ACK = "43"

# -- Event names ---------------------------------------------------------------

EVENT_JOIN_ROOM = "joinRoom"
EVENT_GET_MESSAGE_HISTORY = "getMessageHistory"
EVENT_SEND_MESSAGE = "sendMessage"
EVENT_SET_COOKIE = "setCookie"
EVENT_NEW_MESSAGE = "newMessage"
EVENT_USER_LEFT = "userLeft"
EVENT_MESSAGE_DELETED = "messageDeleted"

# -- Logging -------------------------------------------------------------------

LOG_PAYLOAD_PREVIEW = 500
