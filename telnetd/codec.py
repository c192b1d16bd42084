"""Module provides :class:`TelnetCodec`, the server-end IAC interpreter."""
# std imports
import logging
import struct

# local imports
from .exceptions import ProtocolError
from .telopt import (AO, AYT, BRK, CR, DM, DO, DONT, EC, ECHO, EL, GA, IAC,
                     IP, IS, LF, LOGOUT, NAWS, NOP, SB, SE, SEND, SGA, TTYPE,
                     WILL, WONT, name_command, theNULL)

__all__ = ('TelnetCodec', 'Option', 'escape_iac')

#: parser states of :meth:`TelnetCodec.feed_byte`
_DATA, _IAC, _OPT, _SB, _SB_IAC = range(5)

#: maximum length of a sub-negotiation buffer
_SB_MAXLEN = 1 << 15


def escape_iac(buf):
    r"""Replace bytes in buf ``IAC`` (``b'\xff'``) by ``IAC IAC``."""
    return bytes(buf).replace(IAC, IAC + IAC)


class TelnetCodec:
    """
    Telnet Is-A-Command interpreter for the server end of a connection.

    Bytes received from the client are given to :meth:`feed_byte`, which
    returns the in-band data (if any) they represent, consuming commands,
    option negotiation and sub-negotiation transparently.  Replies required
    by negotiation are transmitted through the ``send`` callable given to
    the class initializer.  Outbound data is prepared for the wire by
    :meth:`encode`.

    Only the options ECHO and SGA (local), NAWS and TTYPE (remote) are
    agreed to.  Any other option is refused with ``DONT`` or ``WONT``.
    """

    #: in-band byte substituted for IAC EC (Erase Character).
    erase_char = b'\x7f'

    #: in-band byte substituted for IAC EL (Erase Line).
    kill_char = b'\x15'

    def __init__(self, send, log=None):
        """
        Class initializer.

        :param Callable send: receives one ``bytes`` argument, a complete
            IAC command to be transmitted as-is (not escaped).
        :param logging.Logger log: target logger, if None is given, one is
            created using the namespace ``'telnetd.codec'``.
        """
        self._send = send
        self.log = log or logging.getLogger(__name__)

        #: Total bytes given to :meth:`feed_byte`.
        self.byte_count = 0

        #: Dictionary of telnet option byte(s) that follow an IAC-DO or
        #: IAC-WILL command sent by our end, ``True`` until answered.
        self.pending_option = Option('pending_option', self.log)

        #: Dictionary of options performed by our end (server).
        self.local_option = Option('local_option', self.log)

        #: Dictionary of options performed by the remote end (client).
        self.remote_option = Option('remote_option', self.log)

        self._state = _DATA
        self._cmd = None
        self._sb_buffer = bytearray()
        self._sb_discard = False
        self._cr_received = False
        self._cr_sent = False

        self._iac_callback = {}
        for iac_cmd, key in ((BRK, 'brk'), (IP, 'ip'), (AO, 'ao'),
                             (AYT, 'ayt'), (EC, 'ec'), (EL, 'el'),
                             (NOP, 'nop'), (DM, 'dm'), (GA, 'ga')):
            self.set_iac_callback(
                cmd=iac_cmd, func=getattr(self, 'handle_{}'.format(key)))

        self._ext_callback = {}
        for ext_cmd, key in ((NAWS, 'naws'), (TTYPE, 'ttype'),
                             (LOGOUT, 'logout')):
            self.set_ext_callback(
                cmd=ext_cmd, func=getattr(self, 'handle_{}'.format(key)))

    def __repr__(self):
        info = ['TelnetCodec']
        _local = sorted(name_command(opt) for opt in self.local_option
                        if self.local_option.enabled(opt))
        if _local:
            info.append('server-will:{}'.format(','.join(_local)))
        _remote = sorted(name_command(opt) for opt in self.remote_option
                         if self.remote_option.enabled(opt))
        if _remote:
            info.append('client-will:{}'.format(','.join(_remote)))
        _pending = sorted(' '.join(name_command(bytes([byte]))
                                   for byte in opt)
                          for opt, val in self.pending_option.items() if val)
        if _pending:
            info.append('pending:{}'.format(','.join(_pending)))
        return '<{0}>'.format(' '.join(info))

    @property
    def is_negotiated(self):
        """Whether every option requested by our end has been answered."""
        return not any(self.pending_option.values())

    @property
    def will_echo(self):
        """Whether the server end is expected to echo client input."""
        return self.local_option.enabled(ECHO)

    # outbound

    def begin_negotiation(self):
        """
        Demand the preferred session options of the client.

        Character-at-a-time mode (WILL ECHO, WILL SGA) is offered, and
        window size and terminal type are requested.  Terminal type is
        queried by sub-negotiation on receipt of WILL TTYPE.
        """
        self.iac(WILL, ECHO)
        self.iac(WILL, SGA)
        self.iac(DO, NAWS)
        self.iac(DO, TTYPE)

    def iac(self, cmd, opt):
        """
        Send Is-A-Command 3-byte negotiation command.

        Returns True if command was sent.  Requests already pending or
        already in effect are not repeated.
        """
        if cmd not in (DO, DONT, WILL, WONT):
            raise ValueError("Expected DO, DONT, WILL, WONT, got {0}."
                             .format(name_command(cmd)))

        if cmd in (DO, WILL):
            if self.pending_option.enabled(cmd + opt):
                self.log.debug('skip {} {}; pending_option = True'.format(
                    name_command(cmd), name_command(opt)))
                return False
            enabled = (self.remote_option if cmd == DO
                       else self.local_option).enabled(opt)
            if enabled:
                self.log.debug('skip {} {}; option already enabled'.format(
                    name_command(cmd), name_command(opt)))
                return False
            self.pending_option[cmd + opt] = True
        elif cmd == DONT:
            self.remote_option[opt] = False
        else:
            self.local_option[opt] = False

        self.log.debug('send IAC {} {}'.format(
            name_command(cmd), name_command(opt)))
        self._send(IAC + cmd + opt)
        return True

    def request_ttype(self):
        """Send IAC SB TTYPE SEND IAC SE, :rfc:`1091`."""
        if self.pending_option.enabled(SB + TTYPE):
            self.log.debug('skip TTYPE SEND; request pending')
            return False
        self.pending_option[SB + TTYPE] = True
        self.log.debug('send IAC SB TTYPE SEND IAC SE')
        self._send(IAC + SB + TTYPE + SEND + IAC + SE)
        return True

    def encode(self, data):
        """
        Return ``data`` prepared for transmission.

        Each LF not already preceded by CR is sent as CR LF, and each
        ``IAC`` data byte is doubled.
        """
        out = bytearray()
        for byte in bytes(data):
            if byte == LF[0] and not self._cr_sent:
                out.extend(CR + LF)
            elif byte == IAC[0]:
                out.extend(IAC + IAC)
            else:
                out.append(byte)
            self._cr_sent = byte == CR[0]
        return bytes(out)

    # inbound

    def feed_byte(self, byte):
        """
        Feed a single byte into the Telnet state machine.

        :param int byte: an 8-bit byte value as integer (0-255), or a
            bytes array of length 1.
        :rtype: bytes
        :returns: in-band data represented by ``byte``, usually of length
            0 or 1.  CR LF and CR NUL are returned as a single LF.
        :raises ProtocolError: on malformed framing.  The state machine has
            already recovered when raised, feeding may continue.
        """
        if isinstance(byte, (bytes, bytearray)):
            (byte,) = byte
        self.byte_count += 1
        value = bytes([byte])
        state = self._state

        if state == _DATA:
            if value == IAC:
                self._state = _IAC
                return b''
            return self._inband(value)

        if state == _IAC:
            self._state = _DATA
            if value == IAC:
                # escaped 0xff data byte
                return self._inband(value)
            return self._command(value)

        if state == _OPT:
            self._state = _DATA
            self._negotiate(self._cmd, value)
            return b''

        if state == _SB:
            if value == IAC:
                self._state = _SB_IAC
            elif not self._sb_discard:
                self._sb_buffer.append(byte)
                if len(self._sb_buffer) >= _SB_MAXLEN:
                    self._sb_buffer.clear()
                    self._sb_discard = True
                    raise ProtocolError('sub-negotiation buffer exceeds {} '
                                        'bytes, discarding until IAC SE'
                                        .format(_SB_MAXLEN))
            return b''

        # state == _SB_IAC
        if value == IAC:
            # escaped 0xff within sub-negotiation
            self._state = _SB
            if not self._sb_discard:
                self._sb_buffer.append(byte)
            return b''
        if value == SE:
            self._state = _DATA
            buf, discard = bytes(self._sb_buffer), self._sb_discard
            self._sb_buffer.clear()
            self._sb_discard = False
            if not discard:
                self.handle_subnegotiation(buf)
            return b''

        # any other command interrupts sub-negotiation, the partial buffer
        # is dropped and the command is interpreted as-is.
        partial = bytes(self._sb_buffer)
        self._sb_buffer.clear()
        self._sb_discard = False
        self._state = _DATA
        inband = self._command(value)
        raise ProtocolError('sub-negotiation {!r} interrupted by IAC {}, '
                            'missing IAC SE'.format(partial,
                                                    name_command(value)),
                            inband=inband)

    def _inband(self, value):
        if self._cr_received:
            self._cr_received = False
            if value in (LF, theNULL):
                return b''
        if value == CR:
            self._cr_received = True
            return LF
        return value

    def _command(self, cmd):
        # second byte of IAC
        if cmd in (DO, DONT, WILL, WONT):
            self._cmd = cmd
            self._state = _OPT
            return b''
        if cmd == SB:
            self._sb_buffer.clear()
            self._sb_discard = False
            self._state = _SB
            return b''
        if cmd == SE:
            raise ProtocolError('IAC SE received without IAC SB')
        if cmd not in self._iac_callback:
            raise ProtocolError('IAC {0}({1!r}): not a legal 2-byte cmd'
                                .format(name_command(cmd), cmd))
        self._iac_callback[cmd](cmd)
        if cmd == EC:
            return self.erase_char
        if cmd == EL:
            return self.kill_char
        return b''

    def _negotiate(self, cmd, opt):
        self.log.debug('recv IAC {} {}'.format(
            name_command(cmd), name_command(opt)))
        if cmd == DO:
            self.handle_do(opt)
        elif cmd == DONT:
            self.handle_dont(opt)
        elif cmd == WILL:
            self.handle_will(opt)
        else:
            self.handle_wont(opt)

    # callback registration

    def set_iac_callback(self, cmd, func):
        """
        Register callable ``func`` as callback for IAC ``cmd``.

        BRK, IP, AO, AYT, EC, EL, NOP, DM, and GA.

        These callbacks receive a single argument, the IAC ``cmd`` which
        triggered it.
        """
        assert callable(func), ('Argument func must be callable')
        assert cmd in (BRK, IP, AO, AYT, EC, EL, NOP, DM, GA), \
            name_command(cmd)
        self._iac_callback[cmd] = func

    def set_ext_callback(self, cmd, func):
        """
        Register ``func`` as callback for receipt of ``cmd`` negotiation.

        :param bytes cmd: One of the following listed bytes:

        * ``NAWS``: receiving two integer arguments (cols, rows), such as
          (80, 24), :rfc:`1073`.
        * ``TTYPE``: receiving one string, usually the terminfo(5) database
          capability name, such as 'xterm', :rfc:`1091`.
        * ``LOGOUT``: receiving one argument, the command ``DO`` or
          ``DONT``, :rfc:`727`.
        """
        assert cmd in (NAWS, TTYPE, LOGOUT), cmd
        assert callable(func), ('Argument func must be callable')
        self._ext_callback[cmd] = func

    # default callbacks

    def handle_nop(self, cmd):
        """Handle IAC No-Operation (NOP)."""
        self.log.debug('IAC NOP: Null Operation (unhandled).')

    def handle_ga(self, cmd):
        """Handle IAC Go-Ahead (GA)."""
        self.log.debug('IAC GA: Go-Ahead (unhandled).')

    def handle_dm(self, cmd):
        """Handle IAC Data-Mark (DM)."""
        self.log.debug('IAC DM: Data-Mark (unhandled).')

    def handle_ao(self, cmd):
        """Handle IAC Abort Output (AO)."""
        self.log.debug('IAC AO: Abort Output (unhandled).')

    def handle_brk(self, cmd):
        """Handle IAC Break (BRK)."""
        self.log.debug('IAC BRK: Break (unhandled).')

    def handle_ip(self, cmd):
        """Handle IAC Interrupt Process (IP)."""
        self.log.debug('IAC IP: Interrupt Process (unhandled).')

    def handle_ayt(self, cmd):
        """Handle IAC Are You There (AYT)."""
        self.log.debug('IAC AYT: Are You There? (unhandled).')

    def handle_ec(self, cmd):
        """
        Handle IAC Erase Character (EC).

        The in-band :attr:`erase_char` is delivered in its place.
        """
        self.log.debug('IAC EC: Erase Character.')

    def handle_el(self, cmd):
        """
        Handle IAC Erase Line (EL).

        The in-band :attr:`kill_char` is delivered in its place.
        """
        self.log.debug('IAC EL: Erase Line.')

    def handle_naws(self, cols, rows):
        """Receive window size ``cols`` and ``rows``, :rfc:`1073`."""
        self.log.debug('Terminal cols={}, rows={}'.format(cols, rows))

    def handle_ttype(self, ttype):
        """Receive TTYPE value ``ttype``, :rfc:`1091`."""
        self.log.debug('Terminal type is {!r}'.format(ttype))

    def handle_logout(self, cmd):
        """Handle (IAC, (DO | DONT), LOGOUT), :rfc:`727`."""
        self.log.debug('recv {} LOGOUT (unhandled)'.format(name_command(cmd)))

    # negotiation, server point of view

    def handle_do(self, opt):
        """
        Process byte 3 of series (IAC, DO, opt) received by remote end.

        ECHO and SGA are agreed to, LOGOUT fires the extended callback
        and is answered WONT.  All others are answered WONT.
        """
        if opt in (ECHO, SGA):
            if self.pending_option.enabled(WILL + opt):
                self.pending_option[WILL + opt] = False
            elif not self.local_option.enabled(opt):
                self.log.debug('send IAC WILL {}'.format(name_command(opt)))
                self._send(IAC + WILL + opt)
            self.local_option[opt] = True
            return

        if opt == LOGOUT:
            self._ext_callback[LOGOUT](DO)

        self.log.debug('DO {0} not supported.'.format(name_command(opt)))
        self.iac(WONT, opt)

    def handle_dont(self, opt):
        """
        Process byte 3 of series (IAC, DONT, opt) received by remote end.

        A DONT can not be declined.  It is only acknowledged with WONT
        when the option was previously in effect.
        """
        if opt == LOGOUT:
            self._ext_callback[LOGOUT](DONT)
        was_enabled = self.local_option.enabled(opt)
        was_pending = self.pending_option.enabled(WILL + opt)
        self.pending_option[WILL + opt] = False
        if was_enabled and not was_pending:
            self.iac(WONT, opt)
        else:
            self.local_option[opt] = False

    def handle_will(self, opt):
        """
        Process byte 3 of series (IAC, WILL, opt) received by remote end.

        NAWS and TTYPE are agreed to, expecting a follow-up
        sub-negotiation, SGA is agreed to.  All others, including ECHO,
        are answered DONT.
        """
        if opt in (NAWS, TTYPE, SGA):
            if self.pending_option.enabled(DO + opt):
                self.pending_option[DO + opt] = False
            elif not self.remote_option.enabled(opt):
                self.log.debug('send IAC DO {}'.format(name_command(opt)))
                self._send(IAC + DO + opt)
            self.remote_option[opt] = True
            if opt == NAWS:
                self.pending_option[SB + NAWS] = True
            elif opt == TTYPE:
                self.request_ttype()
            return

        self.log.debug('WILL {0} not supported.'.format(name_command(opt)))
        self.pending_option[DO + opt] = False
        self.iac(DONT, opt)

    def handle_wont(self, opt):
        """
        Process byte 3 of series (IAC, WONT, opt) received by remote end.

        It is not possible to decline a WONT.  Any sub-negotiation
        expected of ``opt`` is no longer awaited.
        """
        was_enabled = self.remote_option.enabled(opt)
        was_pending = self.pending_option.enabled(DO + opt)
        self.pending_option[DO + opt] = False
        if SB + opt in self.pending_option:
            self.pending_option[SB + opt] = False
        if was_enabled and not was_pending:
            self.iac(DONT, opt)
        else:
            self.remote_option[opt] = False

    # sub-negotiation

    def handle_subnegotiation(self, buf):
        """
        Callback for end of sub-negotiation buffer.

        SB options handled here are NAWS and TTYPE, delegated to their
        extended callbacks.
        """
        if not buf:
            raise ProtocolError('SE: buffer empty')

        cmd, payload = bytes([buf[0]]), buf[1:]
        if self.pending_option.enabled(SB + cmd):
            self.pending_option[SB + cmd] = False
        else:
            self.log.debug('[SB + {}] unsolicited'.format(name_command(cmd)))

        if cmd == NAWS:
            self._handle_sb_naws(payload)
        elif cmd == TTYPE:
            self._handle_sb_ttype(payload)
        else:
            raise ProtocolError('SB unhandled: cmd={}, buf={!r}'
                                .format(name_command(cmd), buf))

    def _handle_sb_naws(self, payload):
        """Fire callback for IAC-SB-NAWS-<cols_rows[4]>-SE (:rfc:`1073`)."""
        if len(payload) != 4:
            raise ProtocolError('bad NAWS length {}: {!r}'
                                .format(len(payload), payload))
        cols, rows = struct.unpack('!HH', payload)
        self.log.debug('recv IAC SB NAWS (cols={0}, rows={1}) IAC SE'
                       .format(cols, rows))
        self._ext_callback[NAWS](cols, rows)

    def _handle_sb_ttype(self, payload):
        """Fire callback for IAC-SB-TTYPE-IS-<ttype>-SE (:rfc:`1091`)."""
        if not payload or bytes([payload[0]]) != IS:
            raise ProtocolError('TTYPE: expected IS, got {!r}'
                                .format(payload))
        ttype = payload[1:].decode('ascii', 'replace')
        self.log.debug('recv IAC SB TTYPE IS {0!r}'.format(ttype))
        self._ext_callback[TTYPE](ttype)


class Option(dict):
    """
    Telnet option state negotiation helper class.

    This class simply acts as a logging decorator for state changes of
    a dictionary describing telnet option negotiation.
    """

    def __init__(self, name, log):
        """
        Class initializer.

        :param str name: decorated name representing option class, such as
            'local', 'remote', or 'pending'.
        :param logging.Logger log: logging instance where debug information
            of state changes is recorded (as DEBUG).
        """
        self.name, self.log = name, log
        dict.__init__(self)

    def enabled(self, key):
        """
        Return True if option is enabled.

        :param bytes key: telnet option
        :rtype: bool
        """
        return bool(self.get(key, None) is True)

    def __setitem__(self, key, value):
        # the real purpose of this class, tracking state negotiation.
        if value != dict.get(self, key, None):
            descr = ' + '.join([name_command(bytes([byte]))
                                for byte in key[:2]
                                ] + [repr(byte) for byte in key[2:]])
            self.log.debug('{}[{}] = {}'.format(self.name, descr, value))
        dict.__setitem__(self, key, value)
