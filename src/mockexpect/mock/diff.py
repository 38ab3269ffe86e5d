"""
mockexpect Diff Reporter

Line diff of two values serialised as canonical JSON, kept as structured
entries so that rendering (plain text, ANSI colours, ...) stays swappable.
"""

import json
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Any, Callable, List

ADDED = 'added'
REMOVED = 'removed'
UNCHANGED = 'unchanged'

# ANSI color codes
ANSI_GREEN = "\033[32m"
ANSI_RED = "\033[31m"
ANSI_DIM = "\033[2m"
ANSI_RESET = "\033[0m"


@dataclass(frozen=True)
class DiffEntry:
    """One line of a structural diff."""

    kind: str
    text: str

    def to_dict(self):
        return {'kind': self.kind, 'text': self.text}


DiffRenderer = Callable[[List[DiffEntry]], str]


def to_canonical_json(value: Any) -> str:
    """Serialise value with sorted keys and 2-space indentation."""
    return json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False, default=repr)


def _line_key(line: str) -> str:
    # Trailing commas depend on the position of a key, not on its value
    return line[:-1] if line.endswith(',') else line


def diff_json(expected: Any, actual: Any) -> List[DiffEntry]:
    """
    Compute a line diff between the JSON forms of two values.

    Lines present only in the expected value are REMOVED, lines present only
    in the actual value are ADDED.

    Args:
        expected: Value the expectation asked for
        actual: Value the request carried

    Returns:
        Ordered list of DiffEntry
    """
    old_lines = to_canonical_json(expected).splitlines()
    new_lines = to_canonical_json(actual).splitlines()

    matcher = SequenceMatcher(
        None,
        [_line_key(line) for line in old_lines],
        [_line_key(line) for line in new_lines],
        autojunk=False
    )

    entries: List[DiffEntry] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == 'equal':
            entries.extend(DiffEntry(UNCHANGED, line) for line in new_lines[j1:j2])
            continue
        if tag in ('replace', 'delete'):
            entries.extend(DiffEntry(REMOVED, line) for line in old_lines[i1:i2])
        if tag in ('replace', 'insert'):
            entries.extend(DiffEntry(ADDED, line) for line in new_lines[j1:j2])
    return entries


def render_plain(entries: List[DiffEntry]) -> str:
    """Render entries with '+  ', '-  ' and '   ' prefixes."""
    lines = []
    for entry in entries:
        if entry.kind == ADDED:
            lines.append('+  ' + entry.text)
        elif entry.kind == REMOVED:
            lines.append('-  ' + entry.text)
        else:
            lines.append('   ' + entry.text)
    return '\n'.join(lines)


def render_ansi(entries: List[DiffEntry]) -> str:
    """Render entries for a terminal: green additions, red removals."""
    lines = []
    for entry in entries:
        if entry.kind == ADDED:
            lines.append(f"{ANSI_GREEN}+  {entry.text}{ANSI_RESET}")
        elif entry.kind == REMOVED:
            lines.append(f"{ANSI_RED}-  {entry.text}{ANSI_RESET}")
        else:
            lines.append(f"{ANSI_DIM}   {entry.text}{ANSI_RESET}")
    return '\n'.join(lines)


RENDERERS = {
    'plain': render_plain,
    'ansi': render_ansi,
}


def get_renderer(renderer) -> DiffRenderer:
    """Resolve a renderer name or callable."""
    if callable(renderer):
        return renderer
    try:
        return RENDERERS[renderer]
    except KeyError:
        raise ValueError(
            f"Unknown diff renderer '{renderer}'. Available: {', '.join(sorted(RENDERERS))}"
        ) from None
