from __future__ import annotations

from dataclasses import MISSING, fields, is_dataclass
from pathlib import PurePath
from types import NoneType, UnionType
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, Union

from typing_extensions import TypeAlias, get_args, get_origin, overload

if TYPE_CHECKING:
    from _typeshed import DataclassInstance

    T_Data = TypeVar("T_Data", bound=DataclassInstance)


T = TypeVar("T")

Primitive: TypeAlias = (
    "str | float | int | bool | None | list[Primitive] | dict[str, Primitive]"
)


class TypeCastError(ValueError):
    def __init__(self, key: str, message: str) -> None:
        self.key = key
        self.message = message
        super().__init__(f"Invalid value for config key {key!r}: {message}")


def _join_key(key: str, next_key: str) -> str:
    return f"{key}.{next_key}" if key else next_key


def _coerce_dataclass(typ: type[T_Data], val: Primitive, *, key: str) -> T_Data:
    val = _coerce_type(dict, val, key=key)
    known = {f.name: f for f in fields(typ)}

    unknown = sorted(k for k in val if k not in known)
    if unknown:
        raise TypeCastError(key, f"unknown keys: {unknown}")

    missing = sorted(
        name
        for name, f in known.items()
        if f.default is f.default_factory is MISSING and name not in val
    )
    if missing:
        raise TypeCastError(key, f"missing keys: {missing}")

    kwargs = {
        k: typecast(known[k].type, v, key=_join_key(key, k)) for k, v in val.items()
    }
    return typ(**kwargs)


def _coerce_path(typ: type[PurePath], val: Primitive, *, key: str) -> PurePath:
    val = _coerce_type(str, val, key=key)
    if not val:
        raise TypeCastError(key, "Path cannot be an empty string")
    return typ(val)


@overload
def _coerce_type(typ: type[T], val: Primitive, *, key: str) -> T: ...
@overload
def _coerce_type(typ: type[Any], val: Primitive, *, key: str) -> Any: ...
def _coerce_type(typ: type[Any], val: Primitive, *, key: str) -> Any:
    if typ is Any:
        return val

    if is_dataclass(typ):
        return _coerce_dataclass(typ, val, key=key)

    if issubclass(typ, PurePath):
        return _coerce_path(typ, val, key=key)

    # TOML booleans would otherwise pass as int
    if not isinstance(val, typ) or (isinstance(val, bool) and typ is not bool):
        msg = f"Value was {type(val).__name__}, but expected {typ.__name__}"
        raise TypeCastError(key, msg)
    return val


def _coerce_dict(typ: type[dict[str, T]], val: Primitive, *, key: str) -> dict[str, T]:
    val = _coerce_type(dict, val, key=key)

    kt, vt = get_args(typ)
    assert kt is str, "non-string dict keys are not supported"
    return {k: typecast(vt, v, key=_join_key(key, k)) for k, v in val.items()}


def _coerce_list(typ: type[list[T]], val: Primitive, *, key: str) -> list[T]:
    val = _coerce_type(list, val, key=key)
    (it,) = get_args(typ)
    return [typecast(it, item, key=f"{key}[{index}]") for index, item in enumerate(val)]


def _coerce_optional(typ: type[T], val: Primitive, *, key: str) -> T | None:
    options = [t for t in get_args(typ) if t is not NoneType]
    if val is None and len(options) < len(get_args(typ)):
        return None

    errors = []
    for option in options:
        try:
            return typecast(option, val, key=key)
        except TypeCastError as e:
            errors.append(f"- {e.message}")
    if len(errors) == 1:
        raise TypeCastError(key, errors[0][2:])
    raise TypeCastError(key, "\nPossible issues:\n" + "\n".join(errors))


_origin_mapper = {
    dict: _coerce_dict,
    list: _coerce_list,
    Union: _coerce_optional,
    UnionType: _coerce_optional,
}


class Coercable(Protocol):
    def __call__(self, typ: Any, val: Primitive, *, key: str) -> Any: ...


@overload
def typecast(typ: type[T], val: Primitive, *, key: str = ...) -> T: ...
@overload
def typecast(typ: Any, val: Primitive, *, key: str = ...) -> Any: ...
def typecast(typ: Any, val: Primitive, *, key: str = "") -> Any:
    """Check and convert a parsed TOML value into ``typ``.

    Dataclasses are built from tables, ``Path`` fields from strings, and
    ``Optional``/union fields try each member in turn. Errors name the
    dotted key that failed, e.g. ``env.JAVA_HOME`` or ``class_path[2]``.
    """
    coerce: Coercable
    if isinstance(typ, type):
        coerce = _coerce_type
    elif (origin := get_origin(typ)) in _origin_mapper:
        coerce = _origin_mapper[origin]
    else:
        raise NotImplementedError(f"{typ} is not supported yet")

    return coerce(typ, val, key=key)
