"""Form <-> persisted record conversion.

This is the only module that reads or writes the JSON text blobs stored on
``forms`` rows. Writes stringify each structured sub-object independently.
Reads are best-effort: a missing or corrupt blob is logged and replaced by
its default, and a single invalid field inside an otherwise valid list is
dropped instead of failing the whole document.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError

from formengine.db.enums import FormStatus
from formengine.schemas.forms import (
    ConditionalRule,
    FormAccessControl,
    FormDefinition,
    FormMetadata,
    FormSettings,
    FormStep,
    FormTheme,
    form_field_adapter,
)

logger = logging.getLogger(__name__)


# record key -> FormDefinition attribute
LIST_BLOBS: dict[str, str] = {
    "fields_json": "fields",
    "steps_json": "steps",
    "conditional_logic_json": "conditional_logic",
}
OBJECT_BLOBS: dict[str, str] = {
    "settings_json": "settings",
    "theme_json": "theme",
    "access_control_json": "access_control",
    "metadata_json": "metadata",
}

SCALAR_KEYS = (
    "id",
    "company_id",
    "name",
    "description",
    "version",
    "is_template",
    "template_category",
    "created_by",
    "updated_by",
    "published_at",
)

_step_adapter: TypeAdapter[FormStep] = TypeAdapter(FormStep)
_rule_adapter: TypeAdapter[ConditionalRule] = TypeAdapter(ConditionalRule)

_ITEM_ADAPTERS: dict[str, TypeAdapter] = {
    "fields": form_field_adapter,
    "steps": _step_adapter,
    "conditional_logic": _rule_adapter,
}
_OBJECT_MODELS: dict[str, type[BaseModel]] = {
    "settings": FormSettings,
    "theme": FormTheme,
    "access_control": FormAccessControl,
    "metadata": FormMetadata,
}


# =============================================================================
# Serialize
# =============================================================================


def _dump_blob(value: Any) -> str:
    if isinstance(value, list):
        payload = [item.model_dump(mode="json") for item in value]
    else:
        payload = value.model_dump(mode="json")
    return json.dumps(payload, separators=(",", ":"))


def serialize(form: FormDefinition) -> dict[str, Any]:
    """Flatten a form into a persistable record keyed like the ``forms`` table."""
    record: dict[str, Any] = {key: getattr(form, key) for key in SCALAR_KEYS}
    record["status"] = FormStatus(form.status).value
    for key, attr in {**LIST_BLOBS, **OBJECT_BLOBS}.items():
        record[key] = _dump_blob(getattr(form, attr))
    return record


# =============================================================================
# Deserialize
# =============================================================================


def _read(record: Mapping[str, Any] | Any, key: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(key)
    return getattr(record, key, None)


def _load_blob(raw: Any, key: str, form_id: Any) -> Any | None:
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        # Already-decoded JSON from a document store.
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Corrupt %s blob on form %s; using default", key, form_id)
        return None


def _load_list(
    raw: Any, key: str, attr: str, form_id: Any, adapter: TypeAdapter
) -> list[Any]:
    data = _load_blob(raw, key, form_id)
    if data is None:
        return []
    if not isinstance(data, list):
        logger.warning("Expected a list in %s on form %s; using default", key, form_id)
        return []
    items: list[Any] = []
    for index, item in enumerate(data):
        try:
            items.append(adapter.validate_python(item))
        except ValidationError as exc:
            logger.warning(
                "Dropping invalid %s[%s] on form %s: %s",
                attr,
                index,
                form_id,
                exc.error_count(),
            )
    return items


def _load_object(
    raw: Any, key: str, form_id: Any, model: type[BaseModel]
) -> BaseModel:
    data = _load_blob(raw, key, form_id)
    if data is None:
        return model()
    try:
        return model.model_validate(data)
    except ValidationError:
        logger.warning("Invalid %s blob on form %s; using default", key, form_id)
        return model()


def _load_status(raw: Any, form_id: Any) -> FormStatus:
    if raw is None:
        return FormStatus.DRAFT
    try:
        return FormStatus(raw)
    except ValueError:
        logger.warning("Unknown status %r on form %s; treating as draft", raw, form_id)
        return FormStatus.DRAFT


def deserialize(record: Mapping[str, Any] | Any) -> FormDefinition:
    """Rebuild a form from a record dict or a ``Form`` row. Never raises on blob damage."""
    form_id = _read(record, "id")
    values: dict[str, Any] = {}
    for key in SCALAR_KEYS:
        value = _read(record, key)
        if value is not None:
            values[key] = value
    values["status"] = _load_status(_read(record, "status"), form_id)
    values.setdefault("name", "")

    for key, attr in LIST_BLOBS.items():
        values[attr] = _load_list(_read(record, key), key, attr, form_id, _ITEM_ADAPTERS[attr])
    for key, attr in OBJECT_BLOBS.items():
        values[attr] = _load_object(_read(record, key), key, form_id, _OBJECT_MODELS[attr])

    return FormDefinition.model_validate(values)


def apply_record(target: Any, record: Mapping[str, Any]) -> None:
    """Copy a serialized record onto an ORM row, skipping the primary key."""
    for key, value in record.items():
        if key == "id":
            continue
        setattr(target, key, value)
