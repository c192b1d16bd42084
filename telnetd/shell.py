"""
Module provides :func:`telnetd_shell`, the default shell of telnetd.

A very small command interpreter, suitable for testing a client and
demonstrating the session interface: a prompt, character-at-a-time line
editing, and a few commands for inspecting the connection.
"""
# std imports
import codecs

# 3rd party
from wcwidth import wcwidth

# local
from . import accessories
from .terminal import Signal

__all__ = ('telnetd_shell',)

CRLF = '\r\n'
PROMPT = 'telnetd> '

_COMMANDS = ('help', 'quit', 'exit', 'size', 'term', 'echo', 'getprop',
             'version')


def _erase_sequence(ucs):
    # move left by the cell width of ``ucs``, blank it, and move left again.
    width = max(wcwidth(ucs), 0)
    return ('\b' * width) + (' ' * width) + ('\b' * width)


async def readline(stdin, stdout, terminal):
    """
    Read and edit one line of input from ``stdin``.

    Input is echoed to ``stdout`` when the terminal attribute ``echo`` is
    set.  The terminal's erase character removes the last character, its
    kill character the whole line.  ANSI escape sequences, such as sent by
    arrow keys, are discarded.

    :rtype: str
    :returns: line without terminator, or ``None`` at end of stream.
    """
    attrs = terminal.get_attributes()
    erase = attrs.control_chars.get('VERASE', 0x7f)
    kill = attrs.control_chars.get('VKILL', 0x15)
    decoder = codecs.getincrementaldecoder('utf8')(errors='replace')

    def echo(text):
        if attrs.echo:
            stdout.echo(text.encode('utf8'))

    line, escape_sequence = [], False
    while True:
        await stdout.flush()
        byte = await stdin.read_byte()
        if byte == -1:
            return None

        if escape_sequence:
            if 0x40 <= byte <= 0x7e and byte != ord('['):
                escape_sequence = False
            continue
        if byte == 0x1b:
            escape_sequence = True
        elif byte == ord('\n'):
            return ''.join(line)
        elif byte in (erase, 0x08):
            if line:
                echo(_erase_sequence(line.pop()))
        elif byte == kill:
            while line:
                echo(_erase_sequence(line.pop()))
        elif byte < 0x20:
            # other control characters are not part of a command
            continue
        else:
            ucs = decoder.decode(bytes([byte]))
            if ucs:
                line.append(ucs)
                echo(ucs)


def _write(stdout, text):
    stdout.write(text.encode('utf8'))


async def telnetd_shell(ctx, stdin, stdout, stderr, args):
    """
    A default shell, for use with :class:`~telnetd.session.SessionBridge`.

    Commands are ``help``, ``quit`` (or ``exit``), ``size``, ``term``,
    ``echo [text]``, ``getprop name`` and ``version``.
    """
    terminal = ctx.terminal
    interrupted = []

    def on_interrupt(signal):
        interrupted.append(signal)

    previous = terminal.handle(Signal.INT, on_interrupt)
    try:
        _write(stdout, 'Ready.' + CRLF)
        while not stdout.is_closing():
            _write(stdout, PROMPT)
            command = await readline(stdin, stdout, terminal)
            if command is None:
                # close/eof by client at prompt
                return
            _write(stdout, CRLF)
            if interrupted:
                interrupted.clear()
                _write(stdout, '^C' + CRLF)
                continue

            name, _, argument = command.strip().partition(' ')
            argument = argument.strip()
            if name in ('quit', 'exit'):
                _write(stdout, 'Goodbye.' + CRLF)
                await stdout.flush()
                ctx.exit()
                return
            elif name == 'help':
                _write(stdout, ', '.join(_COMMANDS) + CRLF)
            elif name == 'size':
                _write(stdout, '{0}x{1}'.format(terminal.cols, terminal.rows)
                       + CRLF)
            elif name == 'term':
                _write(stdout, terminal.type + CRLF)
            elif name == 'echo':
                _write(stdout, argument + CRLF)
            elif name == 'getprop':
                if not argument:
                    _write(stderr, 'usage: getprop name' + CRLF)
                    continue
                value = ctx.get_property(argument)
                _write(stdout, ('(unset)' if value is None else value) + CRLF)
            elif name == 'version':
                _write(stdout, accessories.get_version() + CRLF)
            elif name:
                _write(stderr, '{0}: no such command.'.format(name) + CRLF)
    finally:
        terminal.handle(Signal.INT, previous)
