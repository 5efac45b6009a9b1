# relayd wire protocol constants

LINE_TERMINATOR = b"\n"

# Client -> server
COMMAND_MARKER = "/"

CMD_NICK = "nick"
CMD_JOIN = "join"
CMD_LEAVE = "leave"
CMD_PRIV = "priv"
CMD_BYE = "bye"

# Accepted argument counts per verb: (minimum, maximum). None means unbounded;
# for priv every token after the target belongs to the message text.
COMMAND_ARITY: dict[str, tuple[int, int | None]] = {
    CMD_NICK: (1, 1),
    CMD_JOIN: (1, 1),
    CMD_LEAVE: (0, 0),
    CMD_PRIV: (2, None),
    CMD_BYE: (0, 0),
}

# Server -> client
R_OK = "OK"
R_ERROR = "ERROR"
R_BYE = "BYE"
R_NEWNICK = "NEWNICK"
R_JOINED = "JOINED"
R_LEFT = "LEFT"
R_MESSAGE = "MESSAGE"
R_PRIVATE = "PRIVATE"

# Defaults
DEFAULT_RECV_BUFSIZE = 16384
DEFAULT_MAX_LINE_BYTES = 16384
DEFAULT_MAX_OUTBUF_BYTES = 1024 * 1024
NICK_MAX_CHARS = 32
ROOM_NAME_MAX_CHARS = 64
