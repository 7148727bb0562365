# json_descriptor.py
# Type descriptor service for the JSON codec.
#
# =============================================================================
#  TARGET SHAPES
# =============================================================================
#
# The parser in json_codec never looks at Python types directly. It asks a
# TypeDescriptor five questions:
#
#   kind            - SCALAR / ARRAY / LIST / MAP / RECORD / ANY
#   element_shape   - descriptor for array, list and map values
#   key_shape       - descriptor for map keys
#   field_bindings  - ordered (wire_key, shape, get, set) for records
#   construct()     - a fresh, empty instance to populate
#
# describe() answers those from annotations (list[int], dict[int, str],
# Optional[X], dataclasses, Enum subclasses, ...). Classes that are not
# dataclasses can be described explicitly through register(). Descriptors
# are built once per type and cached.
# =============================================================================

import collections
import collections.abc
import dataclasses
import enum
import logging
import threading
import types
import typing
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CONSTANTS
# ---------------------------------------------------------------------------
JSON_KEY      = "json"      # dataclass field metadata key holding the wire key
SCALAR_TYPES  = (bool, int, float, str, Decimal, datetime)

_LIST_ORIGINS = {
    list:                            list,
    set:                             set,
    frozenset:                       frozenset,
    collections.deque:               collections.deque,
    collections.abc.Iterable:        list,
    collections.abc.Collection:      list,
    collections.abc.Sequence:        list,
    collections.abc.MutableSequence: list,
    collections.abc.Set:             set,
    collections.abc.MutableSet:      set,
}

_MAP_ORIGINS = {
    dict:                            dict,
    collections.OrderedDict:         collections.OrderedDict,
    collections.defaultdict:         collections.defaultdict,
    collections.abc.Mapping:         dict,
    collections.abc.MutableMapping:  dict,
}

_UNION_ORIGINS = (typing.Union, types.UnionType)


class Kind(enum.Enum):
    SCALAR = "scalar"
    ARRAY  = "array"     # fixed length once parsed (tuple)
    LIST   = "list"      # growable collection populated element by element
    MAP    = "map"
    RECORD = "record"
    ANY    = "any"

# ---------------------------------------------------------------------------
# FIELD BINDING
# ---------------------------------------------------------------------------
class FieldBinding:
    """
    One record field as seen on the wire.

    `explicit` marks fields declared through json_field() or register(); those
    are the only ones emitted under FieldSelection.ONLY_BOUND_FIELDS. The
    nested shape is resolved on first use so self-referencing records work.
    """
    __slots__ = ("name", "wire_key", "explicit", "getter", "setter", "_annotation", "_shape")

    def __init__(
        self,
        name: str,
        wire_key: Optional[str] = None,
        annotation: Any = Any,
        explicit: bool = False,
        getter: Optional[Callable[[Any], Any]] = None,
        setter: Optional[Callable[[Any, Any], None]] = None,
    ):
        self.name = name
        self.wire_key = wire_key if wire_key is not None else name
        self.explicit = explicit
        self.getter = getter
        self.setter = setter
        self._annotation = annotation
        self._shape = None

    @property
    def shape(self) -> "TypeDescriptor":
        if self._shape is None:
            self._shape = describe(self._annotation)
        return self._shape

    @property
    def writable(self) -> bool:
        return self.setter is not None

    def get(self, obj):
        return self.getter(obj) if self.getter is not None else getattr(obj, self.name, None)

    def set(self, obj, value) -> None:
        self.setter(obj, value)

    def __repr__(self):
        return f"FieldBinding({self.name!r} -> {self.wire_key!r}, explicit={self.explicit})"

# ---------------------------------------------------------------------------
# TYPE DESCRIPTOR
# ---------------------------------------------------------------------------
class TypeDescriptor:
    """Immutable description of one target shape."""

    __slots__ = ("kind", "target", "element_shape", "key_shape", "field_bindings", "_factory")

    def __init__(
        self,
        kind: Kind,
        target: Any = object,
        element_shape: Optional["TypeDescriptor"] = None,
        key_shape: Optional["TypeDescriptor"] = None,
        field_bindings: Tuple[FieldBinding, ...] = (),
        factory: Optional[Callable[[], Any]] = None,
    ):
        self.kind = kind
        self.target = target
        self.element_shape = element_shape
        self.key_shape = key_shape
        self.field_bindings = tuple(field_bindings)
        self._factory = factory

    def construct(self):
        """Fresh empty instance of the target container or record."""
        if self._factory is not None:
            return self._factory()
        if self.kind is Kind.ANY:
            return {}
        return self.target()

    def binding_for(self, wire_key: str) -> Optional[FieldBinding]:
        """First writable binding whose wire key matches exactly."""
        for binding in self.field_bindings:
            if binding.writable and binding.wire_key == wire_key:
                return binding
        return None

    def __repr__(self):
        name = getattr(self.target, "__name__", repr(self.target))
        return f"TypeDescriptor({self.kind.name}, {name})"


ANY = TypeDescriptor(Kind.ANY, object)
ANY.element_shape = ANY
ANY.key_shape = ANY

# ---------------------------------------------------------------------------
# DECLARATIONS
# ---------------------------------------------------------------------------
def json_field(key: Optional[str] = None, **kwargs):
    """
    dataclasses.field() that marks the field as wire-mapped.

    json_field("Foo") renames the field on the wire; json_field() keeps the
    natural name but still counts as explicitly bound.
    """
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[JSON_KEY] = key
    return dataclasses.field(metadata=metadata, **kwargs)


_registry: Dict[type, Tuple[Mapping[str, Optional[str]], Optional[Callable[[], Any]]]] = {}
_cache: Dict[Any, TypeDescriptor] = {}
_lock = threading.RLock()


def register(cls: type, keys: Optional[Mapping[str, Optional[str]]] = None, *, factory=None) -> type:
    """
    Declare wire keys for a class without touching its definition.

    `keys` maps attribute (or property) name -> wire key; None keeps the
    natural name. Listed names become explicit bindings. Names that are
    properties without a setter are written on stringify only.
    """
    with _lock:
        _registry[cls] = (dict(keys or {}), factory)
        # enclosing shapes (list[cls], records holding cls) are cached too
        _cache.clear()
    return cls


def clear_cache() -> None:
    with _lock:
        _cache.clear()

# ---------------------------------------------------------------------------
# DESCRIBE
# ---------------------------------------------------------------------------
def describe(tp) -> TypeDescriptor:
    """
    TypeDescriptor for a Python type or annotation.

    Anything that cannot be mapped onto a shape degrades to ANY, which parses
    into the plain JSON union (None, bool, int, float, str, list, dict).
    """
    if isinstance(tp, TypeDescriptor):
        return tp
    if tp is Any or tp is object or tp is None or tp is type(None):
        return ANY
    try:
        cached = _cache.get(tp)
    except TypeError:            # unhashable annotation
        return _build(tp)
    if cached is not None:
        return cached
    with _lock:
        cached = _cache.get(tp)
        if cached is None:
            cached = _build(tp)
            _cache[tp] = cached
            logger.debug("described %r as %r", tp, cached)
    return cached


def _build(tp) -> TypeDescriptor:
    origin = typing.get_origin(tp)
    args = typing.get_args(tp)

    if origin is typing.Annotated:
        return describe(args[0])
    if origin in _UNION_ORIGINS:
        members = [a for a in args if a is not type(None)]
        return describe(members[0]) if len(members) == 1 else ANY

    if origin is not None:
        if origin is tuple:
            return TypeDescriptor(Kind.ARRAY, tuple, element_shape=_tuple_element(args))
        if origin in _LIST_ORIGINS:
            element = describe(args[0]) if args else ANY
            return TypeDescriptor(Kind.LIST, _LIST_ORIGINS[origin], element_shape=element)
        if origin in _MAP_ORIGINS:
            key = describe(args[0]) if args else ANY
            value = describe(args[1]) if len(args) > 1 else ANY
            return TypeDescriptor(Kind.MAP, _MAP_ORIGINS[origin], element_shape=value, key_shape=key)
        logger.debug("no shape for generic %r; using ANY", tp)
        return ANY

    if not isinstance(tp, type):
        logger.debug("no shape for %r; using ANY", tp)
        return ANY
    if issubclass(tp, enum.Enum) or issubclass(tp, SCALAR_TYPES):
        return TypeDescriptor(Kind.SCALAR, tp)
    if tp in _registry:
        return _record(tp)
    if issubclass(tp, tuple):
        return TypeDescriptor(Kind.ARRAY, tuple, element_shape=ANY)
    for base in _LIST_ORIGINS:
        if issubclass(tp, base) and not issubclass(tp, (str, bytes, collections.abc.Mapping)):
            return TypeDescriptor(Kind.LIST, _LIST_ORIGINS.get(tp, tp), element_shape=ANY)
    if issubclass(tp, collections.abc.Mapping):
        target = tp if issubclass(tp, dict) else dict
        return TypeDescriptor(Kind.MAP, target, element_shape=ANY, key_shape=ANY)
    return _record(tp)


def _tuple_element(args) -> TypeDescriptor:
    if not args or args == ((),):
        return ANY
    if len(args) == 2 and args[1] is Ellipsis:
        return describe(args[0])
    if all(a == args[0] for a in args):
        return describe(args[0])
    return ANY

# ---------------------------------------------------------------------------
# RECORDS
# ---------------------------------------------------------------------------
def _hints(cls) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(cls)
    except (NameError, TypeError) as exc:
        logger.debug("could not resolve annotations of %s (%s); fields default to Any", cls.__name__, exc)
        raw = {}
        for klass in reversed(cls.__mro__):
            raw.update(getattr(klass, "__annotations__", {}))
        return {name: (hint if not isinstance(hint, str) else Any) for name, hint in raw.items()}


def _attribute_setter(cls, name: str):
    params = getattr(cls, "__dataclass_params__", None)
    if params is not None and params.frozen:
        return lambda obj, value: object.__setattr__(obj, name, value)
    return lambda obj, value: setattr(obj, name, value)


def _record(cls) -> TypeDescriptor:
    keys, factory = _registry.get(cls, ({}, None))
    hints = _hints(cls)
    bindings: List[FieldBinding] = []
    seen = set()

    if dataclasses.is_dataclass(cls):
        for f in dataclasses.fields(cls):
            if f.name in keys:
                explicit, wire_key = True, keys[f.name]
            else:
                explicit, wire_key = JSON_KEY in f.metadata, f.metadata.get(JSON_KEY)
            bindings.append(FieldBinding(
                f.name, wire_key, hints.get(f.name, Any), explicit,
                setter=_attribute_setter(cls, f.name),
            ))
            seen.add(f.name)
        if factory is None:
            factory = _dataclass_factory(cls)
    else:
        for name, hint in hints.items():
            if name.startswith("_") or typing.get_origin(hint) is typing.ClassVar:
                continue
            bindings.append(FieldBinding(
                name, keys.get(name), hint, name in keys,
                setter=_attribute_setter(cls, name),
            ))
            seen.add(name)

    for name, wire_key in keys.items():
        if name in seen:
            continue
        attr = getattr(cls, name, None)
        if isinstance(attr, property):
            setter = (lambda obj, value, _p=attr: _p.fset(obj, value)) if attr.fset else None
            hint = getattr(attr.fget, "__annotations__", {}).get("return", Any)
            if isinstance(hint, str):
                hint = Any
            bindings.append(FieldBinding(name, wire_key, hint, True, setter=setter))
        else:
            bindings.append(FieldBinding(name, wire_key, hints.get(name, Any), True,
                                         setter=_attribute_setter(cls, name)))

    if factory is None and not dataclasses.is_dataclass(cls):
        factory = _plain_factory(cls, [
            b.name for b in bindings
            if b.writable and not isinstance(getattr(cls, b.name, None), property)
        ])
    return TypeDescriptor(Kind.RECORD, cls, field_bindings=bindings, factory=factory or cls)


def _dataclass_factory(cls):
    """
    Build an empty dataclass instance.

    When every init field has a default the regular constructor runs (so
    __post_init__ does too). Otherwise the instance is allocated directly and
    fields without a default start out as None until the parser fills them.
    """
    fields = dataclasses.fields(cls)
    if all(f.default is not dataclasses.MISSING or f.default_factory is not dataclasses.MISSING
           for f in fields if f.init):
        return cls

    def blank():
        obj = cls.__new__(cls)
        for f in fields:
            if f.default is not dataclasses.MISSING:
                value = f.default
            elif f.default_factory is not dataclasses.MISSING:
                value = f.default_factory()
            else:
                value = None
            object.__setattr__(obj, f.name, value)
        return obj

    return blank


def _plain_factory(cls, names: List[str]):
    """Construct with cls() and start declared attributes it did not set as None."""
    if not names:
        return cls

    def blank():
        obj = cls()
        for name in names:
            if not hasattr(obj, name):
                setattr(obj, name, None)
        return obj

    return blank


def instance_bindings(obj) -> Tuple[FieldBinding, ...]:
    """Writable bindings for the public instance attributes of `obj`."""
    attrs = getattr(obj, "__dict__", None) or {}
    return tuple(
        FieldBinding(name, setter=lambda o, value, _n=name: setattr(o, _n, value))
        for name in attrs if not name.startswith("_")
    )


def bindings_of(value) -> Tuple[FieldBinding, ...]:
    """
    Bindings used to stringify a record instance.

    Falls back to public instance attributes for objects whose class declares
    nothing (types.SimpleNamespace and friends).
    """
    bindings = describe(type(value)).field_bindings
    if bindings:
        return bindings
    return instance_bindings(value)
