from typing import Iterable


DELIMITER = "|"
ESCAPE = "\\"


def escape(text: str) -> str:
    out = []
    for ch in text:
        if ch == ESCAPE:
            out.append(ESCAPE + ESCAPE)
        elif ch == DELIMITER:
            out.append(ESCAPE + DELIMITER)
        elif ch == "\n":
            out.append(ESCAPE + "n")
        else:
            out.append(ch)
    return "".join(out)


def unescape(text: str) -> str:
    out = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == ESCAPE and i + 1 < len(text):
            nxt = text[i + 1]
            out.append("\n" if nxt == "n" else nxt)
            i += 2
            continue
        # a trailing lone backslash passes through
        out.append(ch)
        i += 1
    return "".join(out)


def split_escaped(line: str) -> list[str]:
    """Split a record on unescaped delimiters and unescape each field.

    Escape pairs are kept intact while splitting so that ``\\n`` still
    decodes to a newline afterwards. An empty line yields ``[""]``.
    """
    raw_fields = []
    current = []
    escaped = False
    for ch in line:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == ESCAPE:
            current.append(ch)
            escaped = True
        elif ch == DELIMITER:
            raw_fields.append("".join(current))
            current = []
        else:
            current.append(ch)
    raw_fields.append("".join(current))

    return [unescape(field) for field in raw_fields]


def join_escaped(fields: Iterable[object]) -> str:
    return DELIMITER.join(escape(str(field)) for field in fields)
