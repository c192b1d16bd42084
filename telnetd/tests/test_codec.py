"""Test the server-end Telnet IAC interpreter, :class:`TelnetCodec`."""
# std imports
import struct

# local imports
from telnetd.codec import TelnetCodec, escape_iac
from telnetd.exceptions import ProtocolError
from telnetd.telopt import (AYT, BINARY, DO, DONT, EC, ECHO, EL, IAC, IS,
                            LINEMODE, LOGOUT, NAWS, NOP, SB, SE, SEND, SGA,
                            TTYPE, WILL, WONT)
from telnetd.tests.accessories import NEGOTIATION

# 3rd party
import pytest


class Recorder:
    """A codec with every callback recorded."""

    def __init__(self):
        self.sent = []
        self.naws = []
        self.ttype = []
        self.logout = []
        self.codec = TelnetCodec(send=self.sent.append)
        self.codec.set_ext_callback(NAWS, lambda c, r: self.naws.append((c, r)))
        self.codec.set_ext_callback(TTYPE, self.ttype.append)
        self.codec.set_ext_callback(LOGOUT, self.logout.append)

    def feed(self, data):
        """Feed all of ``data``, returning (in-band bytes, errors)."""
        inband, errors = bytearray(), []
        for byte in data:
            try:
                inband.extend(self.codec.feed_byte(byte))
            except ProtocolError as err:
                inband.extend(err.inband)
                errors.append(err)
        return bytes(inband), errors


def test_begin_negotiation():
    """Server demands WILL ECHO, WILL SGA, DO NAWS, DO TTYPE."""
    # given,
    rec = Recorder()

    # exercise,
    rec.codec.begin_negotiation()

    # verify,
    assert b''.join(rec.sent) == NEGOTIATION
    assert not rec.codec.is_negotiated


def test_negotiation_complete():
    """Negotiation completes once every demand is answered."""
    # given,
    rec = Recorder()
    rec.codec.begin_negotiation()
    del rec.sent[:]

    # exercise,
    rec.feed(IAC + DO + ECHO + IAC + DO + SGA + IAC + WILL + NAWS)
    assert not rec.codec.is_negotiated
    rec.feed(IAC + WILL + TTYPE)

    # verify, terminal type is queried on WILL TTYPE,
    assert rec.sent == [IAC + SB + TTYPE + SEND + IAC + SE]
    rec.feed(IAC + SB + NAWS + struct.pack('!HH', 132, 43) + IAC + SE)
    assert not rec.codec.is_negotiated
    rec.feed(IAC + SB + TTYPE + IS + b'VT220' + IAC + SE)
    assert rec.codec.is_negotiated
    assert rec.codec.will_echo
    assert rec.naws == [(132, 43)]
    assert rec.ttype == ['VT220']


def test_wont_answers_pending():
    """A refusal by the client also answers the demand."""
    rec = Recorder()
    rec.codec.begin_negotiation()
    rec.feed(IAC + DONT + ECHO + IAC + DONT + SGA +
             IAC + WONT + NAWS + IAC + WONT + TTYPE)
    assert rec.codec.is_negotiated
    assert not rec.codec.will_echo


@pytest.mark.parametrize('opt', [BINARY, LINEMODE, ECHO])
def test_will_refused(opt):
    """Client offers of options other than NAWS, TTYPE, SGA are refused."""
    rec = Recorder()
    rec.feed(IAC + WILL + opt)
    assert rec.sent == [IAC + DONT + opt]


@pytest.mark.parametrize('opt', [BINARY, LINEMODE, NAWS])
def test_do_refused(opt):
    """Client requests of options other than ECHO, SGA are refused."""
    rec = Recorder()
    rec.feed(IAC + DO + opt)
    assert rec.sent == [IAC + WONT + opt]


def test_do_logout():
    """DO LOGOUT fires the extended callback and is answered WONT."""
    rec = Recorder()
    rec.feed(IAC + DO + LOGOUT)
    assert rec.logout == [DO]
    assert rec.sent == [IAC + WONT + LOGOUT]


@pytest.mark.parametrize('given, expected', [
    (b'abc\r\n', b'abc\n'),
    (b'abc\r\x00', b'abc\n'),
    (b'abc\r', b'abc\n'),
    (b'a\rb', b'a\nb'),
    (b'a\r\n\r\nb', b'a\n\nb'),
    (b'a\nb', b'a\nb'),
])
def test_inbound_line_endings(given, expected):
    """CR LF and CR NUL are received as a single LF."""
    inband, errors = Recorder().feed(given)
    assert inband == expected
    assert not errors


def test_inbound_escaped_iac():
    """IAC IAC is received as a single 0xff data byte."""
    inband, errors = Recorder().feed(b'A' + IAC + IAC + b'B')
    assert inband == b'A\xffB'
    assert not errors


def test_inbound_erase_commands():
    """IAC EC and IAC EL are received as erase and kill characters."""
    inband, _ = Recorder().feed(b'ab' + IAC + EC + b'c' + IAC + EL)
    assert inband == b'ab\x7fc\x15'


def test_inbound_iac_callback():
    """IAC callbacks receive the command byte."""
    rec = Recorder()
    received = []
    rec.codec.set_iac_callback(AYT, received.append)
    inband, _ = rec.feed(IAC + AYT + IAC + NOP + b'x')
    assert received == [AYT]
    assert inband == b'x'


@pytest.mark.parametrize('given, expected', [
    (b'\x41\xff\x42', b'\x41\xff\xff\x42'),
    (b'line\n', b'line\r\n'),
    (b'line\r\n', b'line\r\n'),
    (b'\n\n', b'\r\n\r\n'),
])
def test_encode(given, expected):
    """Outbound IAC is doubled, LF is sent as CR LF."""
    assert TelnetCodec(send=None).encode(given) == expected


def test_encode_crlf_across_calls():
    """A CR ending one write is paired with LF beginning the next."""
    codec = TelnetCodec(send=None)
    assert codec.encode(b'a\r') + codec.encode(b'\nb') == b'a\r\nb'


def test_encode_decode():
    """Data without CR is unchanged by encode, then decode."""
    given = bytes(byte for byte in range(256) if byte != 0x0d) * 2
    encoded = TelnetCodec(send=None).encode(given)
    inband, errors = Recorder().feed(encoded)
    assert inband == given
    assert not errors


def test_escape_iac():
    assert escape_iac(b'\xff\x00\xff') == b'\xff\xff\x00\xff\xff'


def test_subnegotiation_naws_zero():
    """NAWS values are given as received, 0 included."""
    rec = Recorder()
    rec.feed(IAC + SB + NAWS + struct.pack('!HH', 0, 40) + IAC + SE)
    assert rec.naws == [(0, 40)]


def test_subnegotiation_escaped_iac():
    """IAC IAC within sub-negotiation is one 0xff byte of payload."""
    rec = Recorder()
    rec.feed(IAC + SB + NAWS + b'\x00' + IAC + IAC + b'\x00\x18' + IAC + SE)
    assert rec.naws == [(255, 24)]


def test_subnegotiation_missing_se():
    """An unterminated sub-negotiation is discarded, the next applied."""
    # given,
    rec = Recorder()
    given = (IAC + SB + NAWS + b'\x00\x0a\x00\x14' +
             IAC + SB + TTYPE + IS + b'xterm' + IAC + SE)

    # exercise,
    inband, errors = rec.feed(given)

    # verify,
    assert len(errors) == 1
    assert rec.naws == []
    assert rec.ttype == ['xterm']
    assert inband == b''


def test_subnegotiation_interrupted_by_command():
    """A command within an unterminated sub-negotiation is interpreted."""
    rec = Recorder()
    inband, errors = rec.feed(IAC + SB + NAWS + b'\x00' + IAC + EC + b'z')
    assert len(errors) == 1
    assert errors[0].inband == b'\x7f'
    assert inband == b'\x7fz'
    assert rec.naws == []


def test_subnegotiation_bad_naws():
    """NAWS of wrong length is a protocol error, parsing continues."""
    rec = Recorder()
    inband, errors = rec.feed(IAC + SB + NAWS + b'\x00\x50' + IAC + SE + b'k')
    assert len(errors) == 1
    assert rec.naws == []
    assert inband == b'k'


def test_subnegotiation_unknown_option():
    rec = Recorder()
    _, errors = rec.feed(IAC + SB + LINEMODE + b'\x01\x02' + IAC + SE)
    assert len(errors) == 1


def test_stray_se():
    """IAC SE without IAC SB is a protocol error."""
    inband, errors = Recorder().feed(b'a' + IAC + SE + b'b')
    assert len(errors) == 1
    assert inband == b'ab'


def test_illegal_command():
    """IAC followed by a byte that is not a command is a protocol error."""
    inband, errors = Recorder().feed(IAC + b'\x41' + b'b')
    assert len(errors) == 1
    assert inband == b'b'


def test_feed_byte_accepts_bytes():
    assert Recorder().codec.feed_byte(b'x') == b'x'


def test_iac_requires_negotiation_command():
    with pytest.raises(ValueError):
        TelnetCodec(send=None).iac(SB, NAWS)


def test_iac_not_repeated():
    """A demand already pending is not sent again."""
    rec = Recorder()
    assert rec.codec.iac(DO, NAWS)
    assert not rec.codec.iac(DO, NAWS)
    assert rec.sent == [IAC + DO + NAWS]
