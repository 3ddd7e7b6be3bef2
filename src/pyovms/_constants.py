"""Internal constants shared across the library."""

# ------------------------------------------------------------------
# Message bus
# ------------------------------------------------------------------

MQTT_DEFAULT_PORT = 1883
METRIC_TOPIC_MARKER = "/metric/"
STANDARD_NAMESPACE = "v."
STATUS_COMMAND_VERB = "stat"

# ------------------------------------------------------------------
# Binary protocol
# ------------------------------------------------------------------

PROTOCOL_DEFAULT_PORT = 6867
LINE_TERMINATOR = b"\r\n"
ENVELOPE_TAG = "MP"
ENCRYPTED_PREFIX = "MP-0 "
SERVER_WELCOME_TAG = "MP-S"
CLIENT_WELCOME_TAG = "MP-A"
SUPPORTED_CIPHER = "0"
CIPHER_DISCARD_BYTES = 1024
CLIENT_TOKEN_LENGTH = 22
RX_KEY_LABEL = b"server-to-client"
TX_KEY_LABEL = b"client-to-server"

MSG_STATUS = "S"
MSG_LOCATION = "L"
MSG_ENVIRONMENT = "D"
MSG_PING = "A"
MSG_PING_REPLY = "a"
MSG_COMMAND = "C"
MSG_COMMAND_REPLY = "c"

# Command code used to request an out-of-band status report.
STATUS_COMMAND_CODE = "7"

# ------------------------------------------------------------------
# Session detection
# ------------------------------------------------------------------

ACTIVE_CHARGE_STATES: frozenset[str] = frozenset({"charging", "topoff", "heating", "prepare"})
MOVING_GEARS: frozenset[str] = frozenset({"D", "R", "B"})
PLUG_CONNECTED = "connected"

TABLE_TELEMETRY = "telemetry"
TABLE_DRIVES = "drives"
TABLE_CHARGES = "charges"
