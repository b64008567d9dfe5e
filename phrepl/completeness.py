"""
Decides whether the text typed so far is a closed fragment worth parsing.

Only delimiters and strings are checked here. A fragment that is balanced
but ends in the middle of an expression, like `$x = $x +`, counts as
complete and it is the parser that reports it.
"""
import re

_ATTRIBUTE_AT_END = re.compile(r'#\[[^\]]*\]\s*\Z')
_ATTRIBUTE = re.compile(r'#\[[^\]]*\]')
_DECLARATION_WORD = re.compile(
    r'\b(class|interface|trait|enum|function|fn|public|protected|private|readonly)\b'
)
_HEREDOC_START = re.compile(r'<<<[ \t]*([\'"]?)([A-Za-z_][A-Za-z0-9_]*)\1')

_OPENERS = {'{': '}', '[': ']', '(': ')'}
_CLOSERS = {'}': '{', ']': '[', ')': '('}


def has_dangling_attribute(text: str) -> bool:
    trimmed = text.strip()
    if _ATTRIBUTE_AT_END.search(trimmed):
        return True
    if _ATTRIBUTE.search(trimmed):
        after_last = _ATTRIBUTE.split(trimmed)[-1]
        return not _DECLARATION_WORD.search(after_last)
    return False


def open_heredoc(text: str):
    """
    The identifier of the first heredoc or nowdoc that is still waiting for
    its closing line, or None.
    """
    lines = text.split('\n')
    pending = None
    for line in lines:
        if pending is not None:
            if re.fullmatch(r'\s*' + re.escape(pending) + r'\b.*', line):
                pending = None
            continue
        m = _HEREDOC_START.search(line)
        if m:
            pending = m.group(2)
    return pending


def _heredoc_spans(text: str):
    "(start, end) offsets of whole heredoc bodies, so the scanner skips them"
    spans = []
    pos = 0
    while (m := _HEREDOC_START.search(text, pos)):
        ident = m.group(2)
        closing = re.compile(
            r'^[ \t]*' + re.escape(ident) + r'\b', re.MULTILINE
        )
        body_start = text.find('\n', m.end())
        if body_start < 0:
            break
        c = closing.search(text, body_start + 1)
        if c is None:
            break
        spans.append((m.start(), c.end()))
        pos = c.end()
    return spans


def is_complete(text: str) -> bool:
    if has_dangling_attribute(text):
        return False
    if open_heredoc(text) is not None:
        return False

    depth = {'{': 0, '[': 0, '(': 0}
    in_double = False
    in_single = False
    escape = False

    skip = _heredoc_spans(text)
    i = 0
    n = len(text)
    while i < n:
        if skip and i == skip[0][0]:
            i = skip.pop(0)[1]
            continue
        c = text[i]
        i += 1
        if escape:
            escape = False
            continue
        if c == '\\':
            escape = True
            continue
        if c == '"' and not in_single:
            in_double = not in_double
            continue
        if c == "'" and not in_double:
            in_single = not in_single
            continue
        if in_double or in_single:
            continue
        if c in _OPENERS:
            depth[c] += 1
        elif c in _CLOSERS:
            depth[_CLOSERS[c]] -= 1

    if in_double or in_single:
        return False
    # a stray closer is complete: let the parser explain what's wrong
    return all(d <= 0 for d in depth.values())
