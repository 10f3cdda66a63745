# chatd protocol constants (numeric keys and message types)

PROTOCOL_VERSION = 1

DEFAULT_PORT = 1500

# Sender id used for notices issued by the server itself.
# Session ids start at 1, so this never collides with a client.
SERVER_ID = 0

# Envelope keys
K_V = 0
K_T = 1
K_SRC = 2
K_BODY = 3

# Message types
T_TEXT = 1
T_LOGOUT = 2
T_SHUTDOWN = 3
T_BLOCK = 4
T_UNBLOCK = 5

# Framing: 4-byte big-endian length prefix.
FRAME_HEADER_BYTES = 4
MAX_FRAME_BYTES = 64 * 1024

USERNAME_MAX_CHARS = 32
