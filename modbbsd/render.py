"""ANSI styling and frame composition for the text UI."""

import re
from typing import List

ANSI_RESET = '\x1b[0m'
ANSI_BOLD = '\x1b[1m'
ANSI_FAINT = '\x1b[2m'
ANSI_REVERSE = '\x1b[7m'
ANSI_RED = '\x1b[31m'
ANSI_GREEN = '\x1b[32m'
ANSI_YELLOW = '\x1b[33m'
ANSI_MAGENTA = '\x1b[35m'
ANSI_CYAN = '\x1b[36m'

CLEAR_SCREEN = '\x1b[H\x1b[2J'

ANSI_ESCAPE_RE = re.compile(r'\x1B\[[0-?]*[ -/]*[@-~]')


def sanitize_text(text: str) -> str:
    """Remove ANSI escape codes and control characters from user text."""
    text = ANSI_ESCAPE_RE.sub('', text)
    return ''.join(ch for ch in text if ch.isprintable() or ch in ('\n', '\t'))


def header(text: str) -> str:
    return ANSI_BOLD + ANSI_GREEN + text + ANSI_RESET


def title(text: str) -> str:
    return ANSI_BOLD + ANSI_MAGENTA + text + ANSI_RESET


def footer(text: str) -> str:
    return ANSI_FAINT + text + ANSI_RESET


def ok(text: str) -> str:
    return ANSI_GREEN + text + ANSI_RESET


def error(text: str) -> str:
    return ANSI_RED + text + ANSI_RESET


def prompt(text: str) -> str:
    return ANSI_YELLOW + text + ANSI_RESET


def item(text: str, selected: bool) -> str:
    """A list entry, highlighted with a cursor when selected."""
    if selected:
        return ANSI_REVERSE + ANSI_CYAN + f"> {text}" + ANSI_RESET
    return f"  {text}"


def menu(choices: List[str], cursor: int) -> List[str]:
    return [item(choice, i == cursor) for i, choice in enumerate(choices)]


def compose_frame(lines: List[str]) -> str:
    """Turn screen lines into one terminal frame (clear + CRLF lines)."""
    body = '\r\n'.join(line.replace('\n', '\r\n') for line in lines)
    return CLEAR_SCREEN + body
