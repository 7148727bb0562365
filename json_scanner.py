# json_scanner.py
# Character-level scanner and parse error taxonomy for the JSON codec.
#
# =============================================================================
#  SCANNER: PULL-BASED, ONE CHARACTER OF LOOKAHEAD
# =============================================================================
#
# The scanner knows nothing about target shapes. It pulls characters from a
# CharSource (a string or a text stream) and offers the handful of lexical
# primitives the recursive-descent parser in json_codec needs:
#
#   skip_whitespace()     - drop every str.isspace() character
#   expect_literal()      - match true / false / null exactly
#   read_quoted_string()  - decode a "..." string with escapes
#   read_number()         - slice the raw numeric lexeme
#
# End of input is signalled by the empty string, so every comparison against
# a punctuation character fails naturally at EOF.
# =============================================================================

from typing import Any, Iterator, List, Optional, Tuple

# ---------------------------------------------------------------------------
# CONSTANTS
# ---------------------------------------------------------------------------
EOF           = ""
NUMBER_CHARS  = frozenset("-+.eE0123456789")
HEX_DIGITS    = frozenset("0123456789abcdefABCDEF")
READ_CHUNK    = 4096     # characters pulled per read() from a text stream

# Escape letter -> decoded character. Anything else after a backslash is
# passed through as the literal character (so "\q" decodes to "q").
ESCAPES = {
    "a":  "\a",
    "b":  "\b",
    "f":  "\f",
    "n":  "\n",
    "r":  "\r",
    "t":  "\t",
    "v":  "\v",
    "\\": "\\",
    '"':  '"',
    "/":  "/",
}

# ---------------------------------------------------------------------------
# ERROR TAXONOMY
# ---------------------------------------------------------------------------
class JSONError(SyntaxError):
    """
    Base class for every parse failure.

    Subclasses SyntaxError so callers that only care about "malformed input"
    can keep catching the builtin. `expected` names the construct the parser
    was looking for and `position` is the absolute character offset.
    """
    def __init__(self, expected: str, position: Optional[int] = None):
        self.expected = expected
        self.position = position
        if position is None:
            message = f"expecting {expected}"
        else:
            message = f"expecting {expected} at offset {position}"
        super().__init__(message)


class UnexpectedToken(JSONError):
    """A literal, an opening quote or a \\u escape diverged from the input."""


class UnterminatedString(JSONError):
    """Input ended before the closing quote of a string."""


class ExpectedColon(JSONError):
    pass


class ExpectedCommaOrBracket(JSONError):
    pass


class ExpectedCommaOrBrace(JSONError):
    pass


class ExpectedValue(JSONError):
    """No JSON value can start at the current position."""


class DateFormatError(JSONError):
    """A string bound for a datetime target is not in the fixed wire format."""


class NestingTooDeep(JSONError):
    pass


class TrailingData(JSONError):
    """Non-whitespace input follows the root value."""

# ---------------------------------------------------------------------------
# TOKEN RECORD
# ---------------------------------------------------------------------------
class Token(Tuple[str, Any, int]):
    """
    Immutable token record: (kind, value, absolute_offset).

    Only produced by Scanner.tokens(), which backs the CLI --debug dump. The
    parser itself works directly on characters.
    """
    pass

# ---------------------------------------------------------------------------
# CHARACTER SOURCE
# ---------------------------------------------------------------------------
class CharSource:
    """
    Pull-based character source with one character of lookahead.

    Accepts either a str or anything exposing read(n) (an open text file,
    io.StringIO, ...). Streams are pulled in READ_CHUNK sized slices.
    """
    def __init__(self, source):
        if isinstance(source, str):
            self._buf = source
            self._stream = None
        else:
            self._buf = ""
            self._stream = source
        self._idx = 0
        self._consumed = 0     # characters dropped from the front of _buf

    @property
    def offset(self) -> int:
        """Absolute offset of the next character to be read."""
        return self._consumed + self._idx

    def _fill(self) -> bool:
        if self._stream is None:
            return False
        chunk = self._stream.read(READ_CHUNK)
        if not chunk:
            self._stream = None
            return False
        self._consumed += self._idx
        self._buf = self._buf[self._idx:] + chunk
        self._idx = 0
        return True

    def peek(self) -> str:
        if self._idx >= len(self._buf) and not self._fill():
            return EOF
        return self._buf[self._idx]

    def read(self) -> str:
        ch = self.peek()
        if ch:
            self._idx += 1
        return ch

# ---------------------------------------------------------------------------
# SCANNER
# ---------------------------------------------------------------------------
class Scanner:
    """
    Lexical primitives over a CharSource.

    Every method leaves the source positioned on the first character it did
    not consume, which is what lets the parser dispatch on peek().
    """
    def __init__(self, source):
        self.source = source if isinstance(source, CharSource) else CharSource(source)

    @property
    def position(self) -> int:
        return self.source.offset

    def peek(self) -> str:
        return self.source.peek()

    def read(self) -> str:
        return self.source.read()

    def at_end(self) -> bool:
        return self.source.peek() == EOF

    def skip_whitespace(self) -> None:
        src = self.source
        ch = src.peek()
        while ch and ch.isspace():
            src.read()
            ch = src.peek()

    def expect_literal(self, text: str, result):
        """
        Consume exactly len(text) characters matching `text`, return `result`.
        """
        start = self.source.offset
        for expected in text:
            if self.source.read() != expected:
                raise UnexpectedToken(text, start)
        return result

    def read_quoted_string(self) -> str:
        """
        Decode a quoted string starting at the current position.

        Recognized escapes are listed in ESCAPES; \\uXXXX is decoded as well,
        joining a high/low surrogate pair into one code point. Unknown escape
        letters are kept verbatim.
        """
        src = self.source
        start = src.offset
        if src.read() != '"':
            raise UnexpectedToken('"', start)

        out: List[str] = []
        while True:
            ch = src.read()
            if ch == EOF:
                raise UnterminatedString('closing "', start)
            if ch == '"':
                return "".join(out)
            if ch != "\\":
                out.append(ch)
                continue

            esc = src.read()
            if esc == EOF:
                raise UnterminatedString('closing "', start)
            if esc == "u":
                out.append(self._read_unicode_escape(src.offset - 2))
            else:
                out.append(ESCAPES.get(esc, esc))

    def _read_hex4(self, escape_start: int) -> int:
        digits = []
        for _ in range(4):
            ch = self.source.read()
            if ch == EOF:
                raise UnterminatedString('closing "', escape_start)
            if ch not in HEX_DIGITS:
                raise UnexpectedToken("four hex digits after \\u", escape_start)
            digits.append(ch)
        return int("".join(digits), 16)

    def _read_unicode_escape(self, escape_start: int) -> str:
        code = self._read_hex4(escape_start)
        if 0xD800 <= code <= 0xDBFF and self.source.peek() == "\\":
            # Possible surrogate pair; only join when a \u low surrogate follows.
            self.source.read()
            nxt = self.source.read()
            if nxt != "u":
                return chr(code) + ESCAPES.get(nxt, nxt)
            low = self._read_hex4(self.source.offset - 2)
            if 0xDC00 <= low <= 0xDFFF:
                return chr(0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00))
            return chr(code) + chr(low)
        return chr(code)

    def read_number(self) -> str:
        """Maximal run of numeric characters; empty when none start here."""
        src = self.source
        out: List[str] = []
        ch = src.peek()
        while ch and ch in NUMBER_CHARS:
            out.append(src.read())
            ch = src.peek()
        return "".join(out)

    # -----------------------------------------------------------------------
    # TOKEN STREAM (diagnostics)
    # -----------------------------------------------------------------------
    def tokens(self) -> Iterator[Token]:
        """
        Flat token stream of the remaining input, shape-agnostic.

        Yields PUNCT, STRING, NUMBER and LITERAL tokens and raises the same
        errors the parser would on a malformed string, literal or character.
        """
        literals = {"t": ("true", True), "f": ("false", False), "n": ("null", None)}
        while True:
            self.skip_whitespace()
            ch = self.peek()
            pos = self.position
            if ch == EOF:
                return
            if ch in "{}[],:":
                self.read()
                yield Token(("PUNCT", ch, pos))
            elif ch == '"':
                yield Token(("STRING", self.read_quoted_string(), pos))
            elif ch in literals:
                text, value = literals[ch]
                yield Token(("LITERAL", self.expect_literal(text, value), pos))
            else:
                number = self.read_number()
                if not number:
                    raise ExpectedValue("valid JSON", pos)
                yield Token(("NUMBER", number, pos))
