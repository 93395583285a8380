"""
Schema compiler: turns the editor's property tree into a runtime validator.

The editor's schema builder produces a UI-friendly tree:

    {"name": "Person", "properties": [
        {"name": "age", "type": "NUM"},
        {"name": "tags", "type": "ARR", "items": {"name": "tag", "type": "STR"}},
        {"name": "kind", "type": "ENUM", "enum": ["a", "b"], "required": False},
    ]}

``compile_schema`` builds a pydantic model from it. The result validates
parsed model output and describes the shape as JSON Schema for providers
with native structured output.

Schemas are usually drafts while the user is editing, so compilation never
raises: unknown types, missing names and malformed entries degrade to
accept-anything fields (or are skipped) instead of rejecting the schema.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, StrictBool, StrictFloat, StrictInt, StrictStr, create_model
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


# Used when an ENUM property has no options yet. Matches what the editor's
# preview shows for an empty enum.
DEFAULT_ENUM_OPTIONS = ["A", "B"]

_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]+")


def _model_name(raw: Any, fallback: str = "output") -> str:
    name = _NAME_CHARS.sub("_", raw.strip()) if isinstance(raw, str) else ""
    return name.strip("_") or fallback


def _as_dict(value: Any) -> Optional[dict[str, Any]]:
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_none=True)
    if isinstance(value, dict):
        return value
    return None


def _property_type(prop: dict[str, Any], path: str) -> Any:
    kind = prop.get("type")

    if kind == "STR":
        return StrictStr
    if kind == "NUM":
        # int first so whole numbers keep their type through model_dump
        return Union[StrictInt, StrictFloat]
    if kind == "BOOL":
        return StrictBool
    if kind == "ENUM":
        options = prop.get("enum")
        if not isinstance(options, list) or not options:
            options = DEFAULT_ENUM_OPTIONS
        return Literal[tuple(str(o) for o in options)]
    if kind == "ARR":
        items = _as_dict(prop.get("items"))
        if items is None:
            return list[Any]
        return list[_property_type(items, f"{path}[]")]
    if kind == "OBJ":
        return _object_model(prop.get("properties"), _model_name(prop.get("name"), path), path)

    return Any


def _object_model(properties: Any, model_name: str, path: str) -> type[BaseModel]:
    """Build a model for a list of properties; later duplicates win."""
    by_name: dict[str, dict[str, Any]] = {}
    for entry in properties if isinstance(properties, list) else []:
        prop = _as_dict(entry)
        if prop is None:
            continue
        name = prop.get("name")
        if not isinstance(name, str) or not name.strip():
            logger.warning("Skipping unnamed schema property under %s", path or "<root>")
            continue
        by_name[name] = prop

    fields: dict[str, Any] = {}
    for index, (name, prop) in enumerate(by_name.items()):
        child_path = f"{path}.{name}" if path else name
        try:
            annotation = _property_type(prop, child_path)
        except Exception as e:
            logger.warning("Schema property %s degraded to Any: %s", child_path, e)
            annotation = Any

        # Internal field names are positional; the authored name is the alias
        # so names like "model_config" or "a b" stay usable.
        description = prop.get("description") if isinstance(prop.get("description"), str) else None
        if prop.get("required") is False:
            fields[f"f{index}"] = (Optional[annotation], Field(None, alias=name, description=description))
        else:
            fields[f"f{index}"] = (annotation, Field(..., alias=name, description=description))

    try:
        return create_model(model_name, **fields)
    except Exception as e:
        logger.warning("Schema object %s degraded to an open object: %s", path or model_name, e)
        return create_model(model_name)


@dataclass
class CompiledSchema:
    name: str
    model: type[BaseModel]

    def validate(self, value: Any) -> tuple[bool, Any]:
        """
        Validate a parsed JSON value.

        Returns ``(True, cleaned_value)`` on success (unknown keys dropped,
        absent optional keys left absent) or ``(False, errors)``.
        """
        try:
            instance = self.model.model_validate(value)
        except PydanticValidationError as e:
            return False, e.errors(include_url=False)
        return True, instance.model_dump(by_alias=True, exclude_unset=True)

    @property
    def has_fields(self) -> bool:
        return bool(self.model.model_fields)

    def is_valid(self, value: Any) -> bool:
        ok, _ = self.validate(value)
        return ok

    def coerce(self, value: Any) -> Any:
        """
        The validated value, or ``value`` unchanged if it does not fit.

        A schema without properties constrains nothing and returns ``value``.
        """
        if not self.has_fields:
            return value
        ok, result = self.validate(value)
        if ok:
            return result
        logger.warning("Structured output did not match schema %s; keeping it as-is", self.name)
        return value

    def json_schema(self) -> dict[str, Any]:
        return self.model.model_json_schema(by_alias=True)


def compile_schema(schema: Any = None) -> CompiledSchema:
    """Compile an authored schema (dict, StructuredSchema or None)."""
    raw = _as_dict(schema) or {}
    name = _model_name(raw.get("name"))
    try:
        model = _object_model(raw.get("properties"), name, "")
    except Exception as e:
        logger.warning("Schema %s could not be compiled, accepting any object: %s", name, e)
        model = create_model(name)
    return CompiledSchema(name=name, model=model)
