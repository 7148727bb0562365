# json_codec.py
# Type-directed JSON parser and compact serializer.
#
# =============================================================================
#  PARSER: RECURSIVE DESCENT GUIDED BY A TARGET SHAPE
# =============================================================================
#
# JSON does not say whether 10 is an int, a float or a Decimal, whether a
# string is a timestamp, or whether an object is a record or a dictionary.
# The caller says so up front with a target shape (a Python annotation or a
# json_descriptor.TypeDescriptor), and the parser walks the grammar with
# that shape in hand:
#
#   1. Dispatch on the first non-whitespace character (n t f " [ { or a
#      number), one function per grammar rule.
#   2. Containers recurse with the element / key / field shape taken from
#      the descriptor.
#   3. Scalars go through coerce(), which converts exactly or hands the raw
#      value back. A wrong hint never fails the parse; only malformed syntax
#      and malformed timestamps do.
#
# The serializer is shape-free: it dispatches on the runtime type of the
# value and always emits the most compact text (no whitespace).
#
# Depth guard defaults to 256 nested containers so adversarial input fails
# with NestingTooDeep well before the interpreter recursion limit.
# =============================================================================

import argparse
import collections.abc
import enum
import logging
import math
import re
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List

from json_descriptor import ANY, Kind, TypeDescriptor, bindings_of, describe, instance_bindings
from json_scanner import (
    CharSource,
    DateFormatError,
    ExpectedColon,
    ExpectedCommaOrBrace,
    ExpectedCommaOrBracket,
    ExpectedValue,
    NestingTooDeep,
    Scanner,
    TrailingData,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CONSTANTS AND TUNABLES
# ---------------------------------------------------------------------------
DEPTH_LIMIT_DEFAULT = 256       # nested arrays/objects accepted by parse()
DATETIME_FORMAT     = "YYYY-MM-DDTHH:MM:SS.sssZ"

_DATETIME_RE = re.compile(
    r"(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})"
    r"T(?P<hour>\d{2}):(?P<minute>\d{2}):(?P<second>\d{2})"
    r"(?:\.(?P<fraction>\d{1,6}))?"
    r"(?P<zone>Z|[+-]\d{2}:\d{2})"
)

# Output escapes mirror the escapes json_scanner decodes.
_ESCAPE_OUT = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
    '"':  '\\"',
}
_ESCAPE_OUT_RE = re.compile('[\a\b\f\n\r\t\v\\\\"]')

_UNCONVERTED = object()


class FieldSelection(enum.Enum):
    """Which record fields stringify() emits."""
    ALL_FIELDS        = "all"
    ONLY_BOUND_FIELDS = "bound"


class CyclicReferenceError(ValueError):
    """A container or record contains itself."""

# ---------------------------------------------------------------------------
# DATE / TIME WIRE FORMAT
# ---------------------------------------------------------------------------
def parse_datetime(text: str, position=None) -> datetime:
    """
    Parse the fixed wire format into an aware datetime normalized to UTC.

    Accepts a trailing Z or a numeric +HH:MM / -HH:MM offset. The fraction
    is optional and may carry up to microseconds.
    """
    m = _DATETIME_RE.fullmatch(text)
    if m is None:
        raise DateFormatError(f"date in {DATETIME_FORMAT} format", position)
    zone = m.group("zone")
    fraction = (m.group("fraction") or "").ljust(6, "0")
    try:
        if zone == "Z":
            tz = timezone.utc
        else:
            sign = -1 if zone[0] == "-" else 1
            tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
        value = datetime(
            int(m.group("year")), int(m.group("month")), int(m.group("day")),
            int(m.group("hour")), int(m.group("minute")), int(m.group("second")),
            int(fraction), tzinfo=tz,
        )
    except ValueError:
        raise DateFormatError(f"date in {DATETIME_FORMAT} format", position) from None
    return value.astimezone(timezone.utc)


def format_datetime(value: datetime) -> str:
    """UTC wire form with millisecond precision; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
        f".{value.microsecond // 1000:03d}Z"
    )

# ---------------------------------------------------------------------------
# SCALAR COERCION
# ---------------------------------------------------------------------------
# Each converter returns the converted value or _UNCONVERTED. Nothing here
# raises except the datetime converter.

def _to_bool(raw):
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        return _UNCONVERTED
    if isinstance(raw, (int, float, Decimal)):
        return raw != 0
    return _UNCONVERTED


def _to_int(raw):
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, (float, Decimal)):
        if raw.is_finite() if isinstance(raw, Decimal) else math.isfinite(raw):
            if raw == int(raw):
                return int(raw)
        return _UNCONVERTED
    if isinstance(raw, str):
        try:
            return int(raw)
        except ValueError:
            pass
        try:
            return _to_int(Decimal(raw.strip()))
        except InvalidOperation:
            return _UNCONVERTED
    return _UNCONVERTED


def _to_float(raw):
    if isinstance(raw, (bool, int, float, Decimal)):
        try:
            return float(raw)
        except OverflowError:
            return _UNCONVERTED
    if isinstance(raw, str):
        try:
            return float(raw)
        except ValueError:
            return _UNCONVERTED
    return _UNCONVERTED


def _to_str(raw):
    if isinstance(raw, str):
        return raw
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, (int, float, Decimal)):
        return str(raw)
    return _UNCONVERTED


def _to_decimal(raw):
    if isinstance(raw, bool):
        return _UNCONVERTED
    if isinstance(raw, (int, Decimal)):
        return Decimal(raw)
    if isinstance(raw, float):
        return Decimal(repr(raw))
    if isinstance(raw, str):
        try:
            return Decimal(raw.strip())
        except InvalidOperation:
            return _UNCONVERTED
    return _UNCONVERTED


def _to_enum(cls, raw):
    try:
        return cls(raw)
    except ValueError:
        pass
    if isinstance(raw, str) and raw in cls.__members__:
        return cls.__members__[raw]
    return _UNCONVERTED


def _to_datetime(raw, position):
    if isinstance(raw, str):
        return parse_datetime(raw, position)
    return _UNCONVERTED


def _convert(target: type, raw, position):
    if issubclass(target, enum.Enum):
        return _to_enum(target, raw)
    if issubclass(target, datetime):
        return _to_datetime(raw, position)
    for base, converter in (
        (bool, _to_bool),
        (int, _to_int),
        (float, _to_float),
        (Decimal, _to_decimal),
        (str, _to_str),
    ):
        if issubclass(target, base):
            value = converter(raw)
            if value is _UNCONVERTED or target is base:
                return value
            return _construct_scalar(target, value)
    return _construct_scalar(target, raw)


def _construct_scalar(target: type, value):
    try:
        return target(value)
    except (TypeError, ValueError):
        return _UNCONVERTED


def coerce(raw, shape, position=None):
    """
    Convert a raw token value (bool, str or number) to the scalar `shape`.

    Non-scalar and ANY shapes return `raw` untouched. A conversion that is
    not exact also returns `raw` untouched, so a wrong hint never fails a
    parse. The exception is a datetime target fed a string in any other
    format: that raises DateFormatError.
    """
    shape = describe(shape)
    if shape.kind is not Kind.SCALAR or raw is None:
        return raw
    target = shape.target
    if type(raw) is target:
        return raw
    value = _convert(target, raw, position)
    if value is _UNCONVERTED:
        logger.debug("cannot coerce %r to %s; keeping raw value", raw, target.__name__)
        return raw
    return value


def _number(lexeme: str):
    """Number value of a raw lexeme; the lexeme itself when it isn't one."""
    try:
        if any(c in lexeme for c in ".eE"):
            return float(lexeme)
        return int(lexeme)
    except ValueError:
        return lexeme


def _coerce_number(lexeme: str, shape: TypeDescriptor):
    """
    Scalar targets convert from the lexeme itself so no precision is lost
    on the way (1e30 into int, long decimals, "1e5" into str). Anything
    the lexeme cannot become goes through the usual number coercion.
    """
    if shape.kind is Kind.SCALAR and not issubclass(shape.target, datetime):
        value = _convert(shape.target, lexeme, None)
        if value is not _UNCONVERTED:
            return value
    return coerce(_number(lexeme), shape)

# ---------------------------------------------------------------------------
# CORE VALUE PARSER
# ---------------------------------------------------------------------------
def parse_value(scanner: Scanner, shape: TypeDescriptor = ANY, depth: int = 0,
                max_depth: int = DEPTH_LIMIT_DEFAULT):
    """
    Parse one JSON value at the scanner position into `shape`.

    Leaves the scanner on the first character after the value. Raises a
    json_scanner.JSONError subclass on malformed input.
    """
    scanner.skip_whitespace()
    ch = scanner.peek()
    start = scanner.position

    if ch == "n":
        return scanner.expect_literal("null", None)
    if ch == "t":
        return coerce(scanner.expect_literal("true", True), shape)
    if ch == "f":
        return coerce(scanner.expect_literal("false", False), shape)
    if ch == '"':
        return coerce(scanner.read_quoted_string(), shape, start)
    if ch == "[":
        return _parse_array(scanner, shape, depth + 1, max_depth)
    if ch == "{":
        return _parse_object(scanner, shape, depth + 1, max_depth)

    lexeme = scanner.read_number()
    if not lexeme:
        raise ExpectedValue("valid JSON", start)
    return _coerce_number(lexeme, shape)


def _check_depth(scanner: Scanner, depth: int, max_depth: int) -> None:
    if depth > max_depth:
        raise NestingTooDeep(f"at most {max_depth} nested levels", scanner.position)

# ---------------------------------------------------------------------------
# ARRAY PARSER
# ---------------------------------------------------------------------------
def _parse_array(scanner: Scanner, shape: TypeDescriptor, depth: int, max_depth: int):
    """
    Parse [ ... ] and materialize it in the container the shape asks for:
    tuple for ARRAY, the constructed collection for LIST, list otherwise.
    """
    _check_depth(scanner, depth, max_depth)
    scanner.read()  # '['
    element = shape.element_shape or ANY
    items: List[Any] = []

    scanner.skip_whitespace()
    if scanner.peek() == "]":
        scanner.read()
    else:
        while True:
            items.append(parse_value(scanner, element, depth, max_depth))
            scanner.skip_whitespace()
            pos = scanner.position
            ch = scanner.read()
            if ch == "]":
                break
            if ch != ",":
                raise ExpectedCommaOrBracket('"," or "]"', pos)

    if shape.kind is Kind.ARRAY:
        return tuple(items)
    if shape.kind is Kind.LIST:
        return _fill_collection(shape, element, items)
    return items


def _fill_collection(shape: TypeDescriptor, element: TypeDescriptor, items: List[Any]):
    container = shape.construct()
    insert = getattr(container, "append", None) or getattr(container, "add", None)
    if insert is None:
        # immutable collections (frozenset) are built in one go
        return shape.target(coerce(item, element) for item in items)
    for item in items:
        insert(coerce(item, element))
    return container

# ---------------------------------------------------------------------------
# OBJECT PARSER
# ---------------------------------------------------------------------------
def _parse_object(scanner: Scanner, shape: TypeDescriptor, depth: int, max_depth: int):
    """
    Parse { ... } into a record or a map.

    Maps keep every pair (key coerced to key_shape, last duplicate wins).
    Records store a pair through the first writable binding with the same
    wire key; pairs with no binding, or for a binding already stored in
    this object, are parsed as ANY and dropped.
    """
    _check_depth(scanner, depth, max_depth)
    scanner.read()  # '{'
    is_record = shape.kind is Kind.RECORD
    if is_record or shape.kind is Kind.MAP:
        obj = shape.construct()
        if is_record and not shape.field_bindings:
            # undeclared classes bind whatever public attributes construction set
            shape = TypeDescriptor(Kind.RECORD, shape.target, field_bindings=instance_bindings(obj))
        key_shape = shape.key_shape or ANY
        value_shape = shape.element_shape or ANY
    else:
        obj = {}
        key_shape = value_shape = ANY
    stored = set()

    scanner.skip_whitespace()
    if scanner.peek() == "}":
        scanner.read()
        return obj

    while True:
        scanner.skip_whitespace()
        key_pos = scanner.position
        key = scanner.read_quoted_string()
        scanner.skip_whitespace()
        pos = scanner.position
        if scanner.read() != ":":
            raise ExpectedColon('":"', pos)

        if is_record:
            binding = shape.binding_for(key)
            if binding is None or binding.name in stored:
                parse_value(scanner, ANY, depth, max_depth)
                logger.debug("discarded key %r for %r", key, shape)
            else:
                binding.set(obj, parse_value(scanner, binding.shape, depth, max_depth))
                stored.add(binding.name)
        else:
            obj[coerce(key, key_shape, key_pos)] = parse_value(scanner, value_shape, depth, max_depth)

        scanner.skip_whitespace()
        pos = scanner.position
        ch = scanner.read()
        if ch == "}":
            return obj
        if ch != ",":
            raise ExpectedCommaOrBrace('"," or "}"', pos)

# ---------------------------------------------------------------------------
# SERIALIZER
# ---------------------------------------------------------------------------
def _quote(text: str) -> str:
    return '"' + _ESCAPE_OUT_RE.sub(lambda m: _ESCAPE_OUT[m.group()], text) + '"'


def _key_text(key, mode: FieldSelection) -> str:
    """Text of a mapping key before quoting; non-str keys are stringified."""
    if isinstance(key, enum.Enum):
        key = key.value
    if isinstance(key, str):
        return key
    if isinstance(key, datetime):
        return format_datetime(key)
    return stringify(key, mode)


class _Writer:
    """One stringify run: output callback, selection mode and the cycle guard."""

    def __init__(self, emit: Callable[[str], Any], mode: FieldSelection):
        self.emit = emit
        self.mode = mode
        self._active: Dict[int, Any] = {}

    def write(self, value) -> None:
        emit = self.emit
        if value is None:
            emit("null")
        elif isinstance(value, bool):
            emit("true" if value else "false")
        elif isinstance(value, datetime):
            emit(_quote(format_datetime(value)))
        elif isinstance(value, str):
            emit(_quote(value))
        elif isinstance(value, enum.Enum):
            self.write(value.value)
        elif isinstance(value, float):
            emit(repr(value) if math.isfinite(value) else "null")
        elif isinstance(value, Decimal):
            emit(str(value) if value.is_finite() else "null")
        elif isinstance(value, int):
            emit(int.__repr__(value))
        else:
            self._write_structure(value)

    def _write_structure(self, value) -> None:
        marker = id(value)
        if marker in self._active:
            raise CyclicReferenceError(f"cyclic reference to {type(value).__name__} instance")
        self._active[marker] = value
        try:
            if isinstance(value, collections.abc.Mapping):
                self._write_mapping(value)
            elif isinstance(value, collections.abc.Iterable):
                self._write_sequence(value)
            else:
                self._write_record(value)
        finally:
            del self._active[marker]

    def _write_mapping(self, value) -> None:
        emit = self.emit
        emit("{")
        first = True
        for key, item in value.items():
            if not first:
                emit(",")
            emit(_quote(_key_text(key, self.mode)))
            emit(":")
            self.write(item)
            first = False
        emit("}")

    def _write_sequence(self, value) -> None:
        emit = self.emit
        emit("[")
        first = True
        for item in value:
            if not first:
                emit(",")
            self.write(item)
            first = False
        emit("]")

    def _write_record(self, value) -> None:
        emit = self.emit
        only_bound = self.mode is FieldSelection.ONLY_BOUND_FIELDS
        emit("{")
        first = True
        for binding in bindings_of(value):
            if only_bound and not binding.explicit:
                continue
            if not first:
                emit(",")
            emit(_quote(binding.wire_key))
            emit(":")
            self.write(binding.get(value))
            first = False
        emit("}")

# ---------------------------------------------------------------------------
# PUBLIC API
# ---------------------------------------------------------------------------
def stringify(value, mode: FieldSelection = FieldSelection.ALL_FIELDS) -> str:
    """
    Compact JSON text for `value`.

    Records emit every field under ALL_FIELDS and only json_field()/register()
    declared fields under ONLY_BOUND_FIELDS. Raises CyclicReferenceError when
    a container or record reaches itself.
    """
    buf: List[str] = []
    _Writer(buf.append, mode).write(value)
    return "".join(buf)


def stringify_to(value, sink, mode: FieldSelection = FieldSelection.ALL_FIELDS) -> None:
    """Write the stringify() text of `value` to `sink.write` piece by piece."""
    _Writer(sink.write, mode).write(value)


def _parse_document(scanner: Scanner, shape, max_depth: int):
    value = parse_value(scanner, describe(shape), 0, max_depth)
    scanner.skip_whitespace()
    if not scanner.at_end():
        raise TrailingData("end of input", scanner.position)
    return value


def parse(text: str, shape=ANY, *, max_depth: int = DEPTH_LIMIT_DEFAULT):
    """
    Parse JSON text into `shape`.

    `shape` is a Python annotation (int, list[float], dict[int, str], a
    dataclass, ...) or a TypeDescriptor; the default ANY yields plain
    None/bool/int/float/str/list/dict. The whole text must be one value.
    """
    return _parse_document(Scanner(text), shape, max_depth)


def parse_stream(fp, shape=ANY, *, max_depth: int = DEPTH_LIMIT_DEFAULT):
    """parse() over a text stream, read incrementally."""
    return _parse_document(Scanner(CharSource(fp)), shape, max_depth)

# ---------------------------------------------------------------------------
# CLI ENTRYPOINT
# ---------------------------------------------------------------------------
def _cli(argv: List[str]) -> int:
    """
    Validate a JSON file; 0 on success, 1 on SyntaxError.

    --echo prints the document back in compact form instead of OK, --debug
    dumps the scanner token stream.
    """
    ap = argparse.ArgumentParser(description="Type-directed JSON codec")
    ap.add_argument("file", help="JSON file to read")
    ap.add_argument("--debug", action="store_true", help="dump token stream and exit")
    ap.add_argument("--echo", action="store_true", help="print the document in compact form")
    ap.add_argument("--max-depth", type=int, default=DEPTH_LIMIT_DEFAULT)
    ap.add_argument("--log-level", default="WARNING",
                    choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        with open(args.file, "r", encoding="utf-8") as fp:
            if args.debug:
                for tok in Scanner(CharSource(fp)).tokens():
                    print(tok)
                return 0
            value = parse_stream(fp, max_depth=args.max_depth)
    except SyntaxError as exc:
        print(f"SyntaxError: {exc}", file=sys.stderr)
        return 1
    logger.info("parsed %s", args.file)

    print(stringify(value) if args.echo else "OK")
    return 0


def main(argv=None) -> int:
    return _cli(sys.argv[1:] if argv is None else argv)

# ---------------------------------------------------------------------------
# MAIN GUARD
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    sys.exit(main())
