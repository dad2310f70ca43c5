"""
BindingContext - immutable registry of the models a marshaller and
unmarshaller can convert.

Root models are registered explicitly. Each root's XML layout is taken
from its pydantic JSON schema once, at registration, so nested models
reachable through fields bind without extra registration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, PydanticUserError

from docio._bind.spec import (
    MAX_ROOT_TYPES, META_KIND,
    BindingError, is_valid_name, root_name_for,
)

if TYPE_CHECKING:
    from docio._bind.reader import Unmarshaller
    from docio._bind.writer import Marshaller


@dataclass(frozen=True)
class Slot:
    """How one model field (keyed by alias) maps to XML."""

    key: str
    is_list: bool = False
    is_attribute: bool = False
    ref: str | None = None  # layout name of a nested model, None for scalars


@dataclass(frozen=True)
class Layout:
    """Element layouts of one root model and every model it nests."""

    root: str
    shapes: dict[str, tuple[Slot, ...]]


def _branches(schema: dict[str, Any]) -> list[dict[str, Any]]:
    """Flatten anyOf/oneOf/allOf and drop the null branch."""
    for key in ("anyOf", "oneOf", "allOf"):
        if key in schema:
            return [b for sub in schema[key] for b in _branches(sub)]
    return [] if schema.get("type") == "null" else [schema]


def _ref_name(ref: str) -> str:
    return ref.rsplit("/", 1)[-1]


def _is_model(schema: dict[str, Any]) -> bool:
    return schema.get("type") == "object"


def _slot(owner: str, key: str, prop: dict[str, Any], defs: dict[str, Any]) -> Slot:
    if not is_valid_name(key):
        raise BindingError(f"{owner}.{key}: invalid XML name {key!r}")
    branches = _branches(prop)
    is_list = False
    if len(branches) == 1 and branches[0].get("type") == "array":
        is_list = True
        branches = _branches(branches[0].get("items", {}))

    ref = None
    models = [b for b in branches if "$ref" in b and _is_model(defs.get(_ref_name(b["$ref"]), {}))]
    if models:
        if len(branches) != 1:
            raise BindingError(f"{owner}.{key}: unions of models are not supported")
        ref = _ref_name(models[0]["$ref"])
    elif any(b.get("type") in ("object", "array") for b in branches):
        raise BindingError(f"{owner}.{key}: unsupported type")

    is_attribute = prop.get(META_KIND) == "attribute"
    if is_attribute and (is_list or ref is not None):
        raise BindingError(f"{owner}.{key}: only scalar fields can be attributes")
    return Slot(key, is_list, is_attribute, ref)


def _layout_of(cls: type[BaseModel]) -> Layout:
    try:
        schema = cls.model_json_schema(by_alias=True)
    except PydanticUserError as e:
        raise BindingError(f"Cannot describe {cls.__name__}: {e}") from e

    defs = dict(schema.pop("$defs", {}))
    top = _branches(schema)
    if len(top) == 1 and "$ref" in top[0]:
        root = _ref_name(top[0]["$ref"])
    else:
        root = "#"
        defs[root] = schema

    shapes: dict[str, tuple[Slot, ...]] = {}
    for name, definition in defs.items():
        if _is_model(definition):
            owner = definition.get("title", name)
            shapes[name] = tuple(
                _slot(owner, key, prop, defs) for key, prop in definition.get("properties", {}).items()
            )
    return Layout(root, shapes)


class BindingContext:
    """Conversion context shared by every handle a factory creates.

    Usage:
        context = BindingContext.new_instance(Product, Order)
        marshaller = context.create_marshaller()
    """

    def __init__(self, roots: dict[str, type[BaseModel]], layouts: dict[type, Layout]) -> None:
        self._roots = dict(roots)
        self._layouts = dict(layouts)

    @classmethod
    def new_instance(cls, *root_types: type) -> BindingContext:
        """Build a context for the given root models."""
        if not root_types:
            raise BindingError("No classes to bind")
        if len(root_types) > MAX_ROOT_TYPES:
            raise BindingError(f"Too many root classes: {len(root_types)} > {MAX_ROOT_TYPES}")

        roots: dict[str, type[BaseModel]] = {}
        layouts: dict[type, Layout] = {}
        for tp in root_types:
            if not (isinstance(tp, type) and issubclass(tp, BaseModel)):
                raise BindingError(f"Not a pydantic model: {tp!r}")
            name = root_name_for(tp)
            if roots.get(name, tp) is not tp:
                raise BindingError(
                    f"Root element <{name}> bound to both {roots[name].__name__} and {tp.__name__}"
                )
            roots[name] = tp
            if tp not in layouts:
                layouts[tp] = _layout_of(tp)
        return cls(roots, layouts)

    @property
    def root_types(self) -> tuple[type[BaseModel], ...]:
        return tuple(self._roots.values())

    def layout_of(self, tp: type) -> Layout:
        layout = self._layouts.get(tp)
        if layout is None:
            raise BindingError(f"{getattr(tp, '__name__', tp)!s} is not a root class of this context")
        return layout

    def root_name_of(self, tp: type) -> str:
        for name, root in self._roots.items():
            if root is tp:
                return name
        raise BindingError(f"{getattr(tp, '__name__', tp)!s} is not a root class of this context")

    def root_type_for(self, element_name: str) -> type[BaseModel] | None:
        return self._roots.get(element_name)

    def create_marshaller(self) -> Marshaller:
        from docio._bind.writer import Marshaller
        return Marshaller(self)

    def create_unmarshaller(self) -> Unmarshaller:
        from docio._bind.reader import Unmarshaller
        return Unmarshaller(self)

    def __repr__(self) -> str:
        names = ", ".join(tp.__name__ for tp in self._roots.values())
        return f"BindingContext({names})"
