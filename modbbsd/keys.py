"""Keyboard input: decoding terminal bytes into key names, and key bindings.

Keys are plain strings. Named keys use lowercase names ('up', 'enter',
'shift+tab', 'ctrl+s', ...); printable characters are passed through as
themselves.
"""

from dataclasses import dataclass
from typing import List, Tuple

# Escape sequences sent by common terminals, longest first so that prefixes
# do not shadow longer matches.
ESCAPE_SEQUENCES = sorted([
    ('\x1b[A', 'up'),
    ('\x1b[B', 'down'),
    ('\x1b[C', 'right'),
    ('\x1b[D', 'left'),
    ('\x1bOA', 'up'),
    ('\x1bOB', 'down'),
    ('\x1bOC', 'right'),
    ('\x1bOD', 'left'),
    ('\x1b[H', 'home'),
    ('\x1b[F', 'end'),
    ('\x1b[1~', 'home'),
    ('\x1b[4~', 'end'),
    ('\x1b[3~', 'delete'),
    ('\x1b[5~', 'pgup'),
    ('\x1b[6~', 'pgdown'),
    ('\x1b[Z', 'shift+tab'),
], key=lambda item: -len(item[0]))

CONTROL_KEYS = {
    '\r': 'enter',
    '\n': 'enter',
    '\t': 'tab',
    '\x7f': 'backspace',
    '\x08': 'backspace',
    '\x03': 'ctrl+c',
    '\x04': 'ctrl+d',
    '\x13': 'ctrl+s',
}


def decode_keys(data: str) -> List[str]:
    """Split a chunk of terminal input into key names.

    A lone ESC (or one followed by an unknown sequence) is reported as 'esc'.
    CR LF pairs count as a single Enter.
    """
    keys: List[str] = []
    i = 0
    length = len(data)
    while i < length:
        ch = data[i]
        if ch == '\x1b':
            for seq, name in ESCAPE_SEQUENCES:
                if data.startswith(seq, i):
                    keys.append(name)
                    i += len(seq)
                    break
            else:
                keys.append('esc')
                i += 1
            continue
        if ch == '\r' and i + 1 < length and data[i + 1] == '\n':
            keys.append('enter')
            i += 2
            continue
        if ch in CONTROL_KEYS:
            keys.append(CONTROL_KEYS[ch])
        elif ch.isprintable():
            keys.append(ch)
        i += 1
    return keys


def _partial_escape(data: str) -> int:
    """Index where an unfinished escape sequence starts at the end of ``data``, or -1."""
    start = data.rfind('\x1b')
    if start < 0:
        return -1
    tail = data[start:]
    for seq, _ in ESCAPE_SEQUENCES:
        if len(tail) < len(seq) and seq.startswith(tail):
            return start
    return -1


class KeyDecoder:
    """Decodes a stream of input chunks.

    An escape sequence split across two chunks is held back until the next
    chunk arrives. The caller should call :meth:`flush` if nothing follows
    shortly, so that a real Esc press is not held forever.
    """

    def __init__(self) -> None:
        self.pending = ''

    def feed(self, data: str) -> List[str]:
        data = self.pending + data
        self.pending = ''
        cut = _partial_escape(data)
        if cut >= 0:
            data, self.pending = data[:cut], data[cut:]
        return decode_keys(data)

    def flush(self) -> List[str]:
        data, self.pending = self.pending, ''
        return decode_keys(data)


@dataclass(frozen=True)
class Binding:
    keys: Tuple[str, ...]
    help_key: str
    help_desc: str

    def matches(self, key: str) -> bool:
        return key in self.keys

    def help(self) -> str:
        return f"{self.help_key} {self.help_desc}"


class KeyMap:
    """Key bindings shared by all list screens."""

    up = Binding(('up', 'k'), '↑/k', 'up')
    down = Binding(('down', 'j'), '↓/j', 'down')
    enter = Binding(('enter',), 'enter', 'select')
    back = Binding(('esc',), 'esc', 'back')
    quit = Binding(('q', 'ctrl+c'), 'q', 'quit')
    new = Binding(('n',), 'n', 'new')
    edit = Binding(('e',), 'e', 'edit')
    delete = Binding(('d',), 'd', 'delete')
    confirm = Binding(('y', 'Y'), 'y', 'yes')
    deny = Binding(('n', 'N', 'esc'), 'n', 'no')
    submit = Binding(('ctrl+s',), 'ctrl+s', 'submit')
    cancel = Binding(('esc', 'ctrl+c'), 'esc', 'cancel')
    next_field = Binding(('tab',), 'tab', 'next field')
    prev_field = Binding(('shift+tab',), 'shift+tab', 'previous field')


def help_line(*bindings: Binding) -> str:
    return ' • '.join(b.help() for b in bindings)
