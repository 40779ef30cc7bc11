"""Object and field metadata describing each workspace's data model."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FieldMetadataType(str, Enum):
    TEXT = "TEXT"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    DATE_TIME = "DATE_TIME"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    LINK = "LINK"
    CURRENCY = "CURRENCY"
    FULL_NAME = "FULL_NAME"
    RELATION = "RELATION"
    SELECT = "SELECT"
    UUID = "UUID"


LABEL_IDENTIFIER_TYPES = (FieldMetadataType.TEXT, FieldMetadataType.NUMBER)
DEFAULT_LABEL_IDENTIFIER_NAME = "name"


@dataclass
class FieldMetadataItem:
    id: str
    object_metadata_id: str
    name: str
    label: str
    type: FieldMetadataType
    icon: str | None = None
    description: str | None = None
    is_custom: bool = False
    is_active: bool = True
    is_system: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "object_metadata_id": self.object_metadata_id,
            "name": self.name,
            "label": self.label,
            "type": self.type.value,
            "icon": self.icon,
            "description": self.description,
            "is_custom": self.is_custom,
            "is_active": self.is_active,
            "is_system": self.is_system,
        }


@dataclass
class ObjectMetadataItem:
    id: str
    workspace_id: str
    name_singular: str
    name_plural: str
    label_singular: str
    label_plural: str
    icon: str | None = None
    is_custom: bool = False
    is_active: bool = True
    is_system: bool = False
    label_identifier_field_metadata_id: str | None = None
    fields: list[FieldMetadataItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "name_singular": self.name_singular,
            "name_plural": self.name_plural,
            "label_singular": self.label_singular,
            "label_plural": self.label_plural,
            "icon": self.icon,
            "is_custom": self.is_custom,
            "is_active": self.is_active,
            "is_system": self.is_system,
            "label_identifier_field_metadata_id": self.label_identifier_field_metadata_id,
            "fields": [f.to_dict() for f in self.fields],
        }


def field_from_row(row: dict) -> FieldMetadataItem:
    return FieldMetadataItem(
        id=str(row["id"]),
        object_metadata_id=str(row["object_metadata_id"]),
        name=row["name"],
        label=row.get("label") or row["name"],
        type=FieldMetadataType(row.get("type") or FieldMetadataType.TEXT.value),
        icon=row.get("icon"),
        description=row.get("description"),
        is_custom=bool(row.get("is_custom")),
        is_active=bool(row.get("is_active")),
        is_system=bool(row.get("is_system")),
    )


def object_from_row(row: dict, fields: list[FieldMetadataItem] | None = None) -> ObjectMetadataItem:
    label_identifier = row.get("label_identifier_field_metadata_id")
    return ObjectMetadataItem(
        id=str(row["id"]),
        workspace_id=str(row["workspace_id"]),
        name_singular=row["name_singular"],
        name_plural=row["name_plural"],
        label_singular=row.get("label_singular") or row["name_singular"],
        label_plural=row.get("label_plural") or row["name_plural"],
        icon=row.get("icon"),
        is_custom=bool(row.get("is_custom")),
        is_active=bool(row.get("is_active")),
        is_system=bool(row.get("is_system")),
        label_identifier_field_metadata_id=str(label_identifier) if label_identifier else None,
        fields=list(fields or []),
    )


_WORD_BOUNDARY_RE = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]+")


def to_kebab_case(value: str) -> str:
    text = _WORD_BOUNDARY_RE.sub(r"\1-\2", value or "")
    text = _NON_ALNUM_RE.sub("-", text)
    return text.strip("-").lower()


def get_object_slug(item: ObjectMetadataItem) -> str:
    return to_kebab_case(item.name_plural)


def get_field_slug(item: FieldMetadataItem) -> str:
    return to_kebab_case(item.label)


def is_label_identifier_field(field_item: FieldMetadataItem, object_item: ObjectMetadataItem) -> bool:
    if object_item.label_identifier_field_metadata_id:
        return field_item.id == object_item.label_identifier_field_metadata_id
    return field_item.name == DEFAULT_LABEL_IDENTIFIER_NAME


def get_field_identifier_type(field_item: FieldMetadataItem, object_item: ObjectMetadataItem) -> str | None:
    if is_label_identifier_field(field_item, object_item):
        return "name"
    return None


def metadata_id(workspace_id: str, *parts: Any) -> str:
    """Stable id for standard metadata seeded into a workspace."""
    namespace = uuid.UUID(str(workspace_id))
    return str(uuid.uuid5(namespace, ":".join(str(p) for p in parts)))


# Standard objects every workspace starts with: (name_singular, name_plural,
# label_singular, label_plural, icon, fields as (name, label, type, is_system)).
STANDARD_OBJECTS = (
    (
        "company",
        "companies",
        "Company",
        "Companies",
        "IconBuildingSkyscraper",
        (
            ("id", "Id", FieldMetadataType.UUID, True),
            ("name", "Name", FieldMetadataType.TEXT, False),
            ("domainName", "Domain Name", FieldMetadataType.TEXT, False),
            ("employees", "Employees", FieldMetadataType.NUMBER, False),
            ("address", "Address", FieldMetadataType.TEXT, False),
            ("createdAt", "Creation date", FieldMetadataType.DATE_TIME, False),
        ),
    ),
    (
        "person",
        "people",
        "Person",
        "People",
        "IconUser",
        (
            ("id", "Id", FieldMetadataType.UUID, True),
            ("name", "Name", FieldMetadataType.FULL_NAME, False),
            ("email", "Email", FieldMetadataType.EMAIL, False),
            ("city", "City", FieldMetadataType.TEXT, False),
            ("company", "Company", FieldMetadataType.RELATION, False),
            ("createdAt", "Creation date", FieldMetadataType.DATE_TIME, False),
        ),
    ),
    (
        "connectedAccount",
        "connectedAccounts",
        "Connected Account",
        "Connected Accounts",
        "IconAt",
        (
            ("id", "Id", FieldMetadataType.UUID, True),
            ("handle", "Handle", FieldMetadataType.TEXT, False),
            ("provider", "Provider", FieldMetadataType.TEXT, False),
            ("lastSyncHistoryId", "Last sync history ID", FieldMetadataType.TEXT, False),
        ),
    ),
)
_SYSTEM_OBJECTS = {"connectedAccount"}


def standard_objects(workspace_id: str) -> list[ObjectMetadataItem]:
    items = []
    for name_singular, name_plural, label_singular, label_plural, icon, field_defs in STANDARD_OBJECTS:
        object_id = metadata_id(workspace_id, "object", name_singular)
        fields = [
            FieldMetadataItem(
                id=metadata_id(workspace_id, "field", name_singular, name),
                object_metadata_id=object_id,
                name=name,
                label=label,
                type=field_type,
                is_system=is_system,
            )
            for name, label, field_type, is_system in field_defs
        ]
        items.append(
            ObjectMetadataItem(
                id=object_id,
                workspace_id=str(workspace_id),
                name_singular=name_singular,
                name_plural=name_plural,
                label_singular=label_singular,
                label_plural=label_plural,
                icon=icon,
                is_system=name_singular in _SYSTEM_OBJECTS,
                fields=fields,
            )
        )
    return items
