"""Self-describing value encoding for RPC payloads and persisted state.

Values are written as length-prefixed JSON records that carry their own type
tags, so a decoded value never shares references with the encoded one.
Dataclass fields whose names start with an underscore are private and are not
transmitted; the checker reports them once per type. Decoding into a template
instance that already holds non-default values is reported as well.
"""

import base64
import dataclasses
import enum
import json
import logging
import struct
import threading
import types
import typing
from typing import Any, Literal

__all__ = [
    "Decoder",
    "Encoder",
    "check_value",
    "error_count",
    "register",
    "register_name",
]

_log = logging.getLogger(__name__)

_HEADER = struct.Struct(">I")

_lock = threading.Lock()
_errors = 0
_checked: set = set()
_by_name: dict = {}
_by_type: dict = {}
_seen: dict = {}

_BUILTIN_HINTS = {
    "int": int,
    "str": str,
    "float": float,
    "bool": bool,
    "bytes": bytes,
    "Any": Any,
    "typing.Any": Any,
    "object": object,
}


class _Unresolved:
    """Marks a field annotation written as text that names a type."""


def error_count():
    """Number of problems the checker has reported so far."""
    with _lock:
        return _errors


def _record_error(message, *, only_first=False):
    global _errors
    with _lock:
        if not only_first or _errors < 1:
            _log.warning(message)
        _errors += 1


def _default_name(cls):
    return f"{cls.__module__}.{cls.__qualname__}"


def _name_of(cls):
    with _lock:
        name = _by_type.get(cls)
        if name is None:
            name = _default_name(cls)
            _seen.setdefault(name, cls)
        return name


def _registered(name):
    with _lock:
        return _by_name.get(name)


def _seen_type(name):
    with _lock:
        return _by_name.get(name) or _seen.get(name)


def _is_class(tp):
    return isinstance(tp, type) and typing.get_origin(tp) is None


def _loose(tp):
    """True for hints that accept any value."""
    if tp is Any or tp is object or tp is _Unresolved or isinstance(tp, typing.TypeVar):
        return True
    return not isinstance(tp, type) and typing.get_origin(tp) is None


def _members(hint):
    if hint is None:
        return (type(None),)
    if typing.get_origin(hint) in (typing.Union, types.UnionType):
        return typing.get_args(hint)
    return (hint,)


def _field_hint(field):
    tp = field.type
    if isinstance(tp, str):
        return _BUILTIN_HINTS.get(tp.strip(), _Unresolved)
    return tp


def _hints(cls):
    return {f.name: _field_hint(f) for f in dataclasses.fields(cls)}


def _check_type(tp):
    if typing.get_origin(tp) is not None:
        for arg in typing.get_args(tp):
            _check_type(arg)
        return
    if not (_is_class(tp) and dataclasses.is_dataclass(tp)):
        return
    with _lock:
        if tp in _checked:
            return
        _checked.add(tp)
    hints = _hints(tp)
    for f in dataclasses.fields(tp):
        if f.name.startswith("_"):
            _record_error(
                f"labgob error: private field {f.name} of {tp.__name__} "
                "in RPC or persist/snapshot will not be transmitted"
            )
        _check_type(hints.get(f.name, Any))


def check_value(value):
    """Report private dataclass fields reachable from a value or a type."""
    if isinstance(value, type) or typing.get_origin(value) is not None:
        _check_type(value)
    elif dataclasses.is_dataclass(value):
        _check_type(type(value))
    elif isinstance(value, (list, tuple)):
        for item in value:
            check_value(item)
    elif isinstance(value, dict):
        for key, item in value.items():
            check_value(key)
            check_value(item)


def _check_default(value, depth, name):
    if depth > 3:
        return
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        for f in dataclasses.fields(value):
            sub = f"{name}.{f.name}" if name else f.name
            _check_default(getattr(value, f.name), depth + 1, sub)
        return
    if isinstance(value, (bool, int, float, str)) and value:
        what = name or type(value).__name__
        _record_error(
            f"labgob warning: Decoding into a non-default variable/field {what} may not work",
            only_first=True,
        )


def register(cls):
    """Register a class under its qualified name so it can be decoded anywhere."""
    if not _is_class(cls):
        raise TypeError("register() expects a class")
    return register_name(_default_name(cls), cls)


def register_name(name, cls):
    """Register a class under an explicit name."""
    if not _is_class(cls):
        raise TypeError("register_name() expects a class")
    check_value(cls)
    with _lock:
        existing = _by_name.get(name)
        if existing is not None and existing is not cls:
            raise ValueError(f"registering duplicate types for {name!r}")
        known = _by_type.get(cls)
        if known is not None and known != name:
            raise ValueError(f"registering duplicate names for {cls.__qualname__}")
        _by_name[name] = cls
        _by_type[cls] = name
    return cls


def _to_tree(value):
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, enum.Enum):
        return {"e": _name_of(type(value)), "v": _to_tree(value.value)}
    if isinstance(value, (int, float, str)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return {"b": base64.b64encode(bytes(value)).decode("ascii")}
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            "o": _name_of(type(value)),
            "f": {
                f.name: _to_tree(getattr(value, f.name))
                for f in dataclasses.fields(value)
                if not f.name.startswith("_")
            },
        }
    if isinstance(value, list):
        return {"l": [_to_tree(item) for item in value]}
    if isinstance(value, tuple):
        return {"t": [_to_tree(item) for item in value]}
    if isinstance(value, dict):
        return {"d": [[_to_tree(k), _to_tree(v)] for k, v in value.items()]}
    raise TypeError(f"cannot encode value of type {type(value).__name__}")


def _pick(hint, origin):
    for m in _members(hint):
        if _loose(m):
            return Any
        base = typing.get_origin(m) or m
        if isinstance(base, type) and issubclass(origin, base):
            return m
    raise ValueError(f"cannot decode a {origin.__name__} as {hint!r}")


def _check_scalar(tree, hint):
    for m in _members(hint):
        if _loose(m):
            return tree
        if typing.get_origin(m) is Literal:
            if tree in typing.get_args(m):
                return tree
            continue
        if not _is_class(m):
            continue
        if m is type(None):
            if tree is None:
                return None
            continue
        if tree is None:
            continue
        if issubclass(m, enum.Enum):
            try:
                return m(tree)
            except ValueError:
                continue
        if isinstance(tree, bool):
            if m is bool:
                return tree
            continue
        if m is float and isinstance(tree, (int, float)):
            return float(tree)
        if isinstance(tree, m):
            return tree
    raise ValueError(f"cannot decode {tree!r} as {hint!r}")


def _decode_object(tree, hint):
    name = tree["o"]
    fields_tree = tree.get("f")
    if not isinstance(name, str) or not isinstance(fields_tree, dict):
        raise ValueError("malformed object record")
    members = _members(hint)
    candidates = [m for m in members if _is_class(m) and dataclasses.is_dataclass(m)]
    cls = next((m for m in candidates if _name_of(m) == name), None)
    if cls is None:
        registered = _registered(name)
        if registered is None and any(m is _Unresolved for m in members):
            registered = _seen_type(name)
        if registered is not None and (
            any(_loose(m) for m in members)
            or any(_is_class(m) and issubclass(registered, m) for m in members)
        ):
            cls = registered
    if cls is None and candidates:
        cls = candidates[0]
    if cls is None:
        raise ValueError(f"type not registered for decoding: {name}")
    hints = _hints(cls)
    obj = object.__new__(cls)
    for f in dataclasses.fields(cls):
        if f.name in fields_tree:
            value = _from_tree(fields_tree[f.name], hints.get(f.name, Any))
        elif f.default is not dataclasses.MISSING:
            value = f.default
        elif f.default_factory is not dataclasses.MISSING:
            value = f.default_factory()
        else:
            value = None
        object.__setattr__(obj, f.name, value)
    return obj


def _decode_enum(tree, hint):
    name = tree["e"]
    raw = _from_tree(tree.get("v"), Any)
    members = _members(hint)
    for m in members:
        if _is_class(m) and issubclass(m, enum.Enum):
            try:
                return m(raw)
            except ValueError:
                continue
    if any(_loose(m) for m in members):
        registered = _registered(name)
        if registered is None and any(m is _Unresolved for m in members):
            registered = _seen_type(name)
        if registered is not None and issubclass(registered, enum.Enum):
            return registered(raw)
        return raw
    return _check_scalar(raw, hint)


def _from_tree(tree, hint):
    if not isinstance(tree, dict):
        if isinstance(tree, list):
            raise ValueError("malformed record")
        return _check_scalar(tree, hint)
    if "o" in tree:
        return _decode_object(tree, hint)
    if "e" in tree:
        return _decode_enum(tree, hint)
    if "b" in tree:
        _pick(hint, bytes)
        return base64.b64decode(tree["b"])
    if "l" in tree:
        m = _pick(hint, list)
        args = typing.get_args(m)
        item_hint = args[0] if args else _inner_loose(hint)
        return [_from_tree(item, item_hint) for item in tree["l"]]
    if "t" in tree:
        m = _pick(hint, tuple)
        items = tree["t"]
        args = typing.get_args(m)
        if args and args[-1] is Ellipsis:
            item_hints = [args[0]] * len(items)
        elif args:
            if len(args) != len(items):
                raise ValueError(f"tuple of {len(items)} items does not match {m!r}")
            item_hints = list(args)
        else:
            item_hints = [_inner_loose(hint)] * len(items)
        return tuple(_from_tree(item, h) for item, h in zip(items, item_hints))
    if "d" in tree:
        m = _pick(hint, dict)
        args = typing.get_args(m)
        if len(args) == 2:
            key_hint, value_hint = args
        else:
            key_hint = value_hint = _inner_loose(hint)
        return {
            _from_tree(k, key_hint): _from_tree(v, value_hint) for k, v in tree["d"]
        }
    raise ValueError("malformed record")


def _inner_loose(hint):
    """Item hint for containers whose own hint gives no item types."""
    return _Unresolved if any(m is _Unresolved for m in _members(hint)) else Any


class Encoder:
    """Writes encoded values to a binary stream."""

    def __init__(self, writer):
        self._writer = writer

    def encode(self, value):
        """Encode one value; returns the number of bytes written."""
        check_value(value)
        payload = json.dumps(_to_tree(value), separators=(",", ":")).encode("utf-8")
        record = _HEADER.pack(len(payload)) + payload
        self._writer.write(record)
        return len(record)


class Decoder:
    """Reads values written by an Encoder from a binary stream."""

    def __init__(self, reader):
        self._reader = reader

    def _read_exact(self, n):
        data = bytearray()
        while len(data) < n:
            piece = self._reader.read(n - len(data))
            if not piece:
                break
            data += piece
        return bytes(data)

    def decode(self, target):
        """Decode the next value.

        ``target`` is either a type hint describing the expected value or a
        template instance whose type is used; a template holding non-default
        values is reported.
        """
        check_value(target)
        is_hint = (
            isinstance(target, (type, typing.TypeVar))
            or target is Any
            or typing.get_origin(target) is not None
        )
        if is_hint:
            hint = target
        else:
            _check_default(target, 2, "")
            hint = type(target)
        header = self._read_exact(_HEADER.size)
        if not header:
            raise EOFError("no more values to decode")
        if len(header) < _HEADER.size:
            raise ValueError("truncated record header")
        (length,) = _HEADER.unpack(header)
        payload = self._read_exact(length)
        if len(payload) < length:
            raise ValueError("truncated record")
        return _from_tree(json.loads(payload.decode("utf-8")), hint)