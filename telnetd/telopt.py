"""Telnet command and option bytes understood by :mod:`telnetd`."""
# commands, rfc-854
IAC = b"\xff"
DONT = b"\xfe"
DO = b"\xfd"
WONT = b"\xfc"
WILL = b"\xfb"
SB = b"\xfa"
GA = b"\xf9"
EL = b"\xf8"
EC = b"\xf7"
AYT = b"\xf6"
AO = b"\xf5"
IP = b"\xf4"
BRK = b"\xf3"
DM = b"\xf2"
NOP = b"\xf1"
SE = b"\xf0"

# options
BINARY = b"\x00"
ECHO = b"\x01"
SGA = b"\x03"
STATUS = b"\x05"
TM = b"\x06"
LOGOUT = b"\x12"
TTYPE = b"\x18"
NAWS = b"\x1f"
LINEMODE = b'"'
NEW_ENVIRON = b"'"

# in-band bytes
theNULL = b"\x00"
CR = b"\r"
LF = b"\n"

(IS, SEND) = (bytes([const]) for const in range(2))

__all__ = (
    "AO",
    "AYT",
    "BINARY",
    "BRK",
    "CR",
    "DM",
    "DO",
    "DONT",
    "EC",
    "ECHO",
    "EL",
    "GA",
    "IAC",
    "IP",
    "IS",
    "LF",
    "LINEMODE",
    "LOGOUT",
    "NAWS",
    "NEW_ENVIRON",
    "NOP",
    "SB",
    "SE",
    "SEND",
    "SGA",
    "STATUS",
    "TM",
    "TTYPE",
    "WILL",
    "WONT",
    "theNULL",
    "name_command",
    "name_commands",
)

#: List of globals that may match an iac command option bytes
_DEBUG_OPTS = dict(
    [
        (value, key)
        for key, value in globals().items()
        if key
        in (
            "IAC",
            "DONT",
            "DO",
            "WONT",
            "WILL",
            "SB",
            "GA",
            "EL",
            "EC",
            "AYT",
            "AO",
            "IP",
            "BRK",
            "DM",
            "NOP",
            "SE",
            "ECHO",
            "SGA",
            "STATUS",
            "TM",
            "LOGOUT",
            "TTYPE",
            "NAWS",
            "LINEMODE",
            "NEW_ENVIRON",
        )
    ]
)


def name_command(byte):
    """Return string description for (maybe) telnet command byte."""
    return _DEBUG_OPTS.get(byte, repr(byte))


def name_commands(cmds, sep=" "):
    """Return string description for array of (maybe) telnet command bytes."""
    return sep.join([name_command(bytes([byte])) for byte in cmds])
