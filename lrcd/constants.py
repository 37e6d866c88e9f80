# Line relay protocol constants (wire vocabulary and defaults)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000
DEFAULT_BACKLOG = 128

# 16 KiB per-connection buffers.
READ_CHUNK_BYTES = 16384
MAX_LINE_BYTES = 16384
MAX_OUTBOUND_BYTES = 1024 * 1024

ENCODING = "utf-8"
LINE_END = b"\n"

# Connection states
S_INIT = "init"
S_OUTSIDE = "outside"
S_INSIDE = "inside"

# Client commands (matched case-insensitively, without the leading slash)
C_NICK = "nick"
C_JOIN = "join"
C_LEAVE = "leave"
C_BYE = "bye"
C_PRIV = "priv"

# Command prefix and the escaped (literal) form of it.
CMD_PREFIX = "/"
ESCAPED_PREFIX = "//"

# Server replies
R_OK = "OK"
R_ERROR = "ERROR"
R_BYE = "BYE"

# Server events
E_MESSAGE = "MESSAGE"
E_JOINED = "JOINED"
E_LEFT = "LEFT"
E_NEWNICK = "NEWNICK"
E_PRIVATE = "PRIVATE"

# Seconds the listener stays unregistered after accept() fails (e.g. EMFILE).
ACCEPT_RETRY_DELAY = 1.0
