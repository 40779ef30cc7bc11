"""Settings > Data model > object detail: view model and commands."""

from __future__ import annotations

import logging
from typing import Any

from app.metadata import (
    LABEL_IDENTIFIER_TYPES,
    FieldMetadataItem,
    ObjectMetadataItem,
    get_field_identifier_type,
    get_field_slug,
    get_object_slug,
    is_label_identifier_field,
)
from app.tenancy import NotFoundError, TenantContext

logger = logging.getLogger("crm.settings")

OBJECTS_PATH = "/settings/objects"
NEW_FIELD_STEP_1 = "./new-field/step-1"
NEW_FIELD_STEP_2 = "./new-field/step-2"


class ObjectMetadataNotFound(NotFoundError):
    pass


class FieldMetadataNotFound(NotFoundError):
    pass


class MetadataCommandError(RuntimeError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


def active_fields(item: ObjectMetadataItem) -> list[FieldMetadataItem]:
    return [f for f in item.fields if f.is_active and not f.is_system]


def inactive_fields(item: ObjectMetadataItem) -> list[FieldMetadataItem]:
    return [f for f in item.fields if not f.is_active and not f.is_system]


def can_be_set_as_label_identifier(field_item: FieldMetadataItem, object_item: ObjectMetadataItem) -> bool:
    return (
        object_item.is_custom
        and not is_label_identifier_field(field_item, object_item)
        and field_item.type in LABEL_IDENTIFIER_TYPES
    )


def _row_variant(item: ObjectMetadataItem) -> str:
    return "identifier" if item.is_custom else "field-type"


def _active_row(field_item: FieldMetadataItem, item: ObjectMetadataItem) -> dict:
    is_identifier = is_label_identifier_field(field_item, item)
    return {
        "field": field_item.to_dict(),
        "identifier_type": get_field_identifier_type(field_item, item),
        "variant": _row_variant(item),
        "actions": {
            "edit": f"./{get_field_slug(field_item)}",
            "set_as_label_identifier": can_be_set_as_label_identifier(field_item, item),
            "deactivate": not is_identifier,
        },
    }


def _inactive_row(field_item: FieldMetadataItem, item: ObjectMetadataItem) -> dict:
    return {
        "field": field_item.to_dict(),
        "identifier_type": None,
        "variant": _row_variant(item),
        "actions": {
            "activate": True,
            "erase": bool(field_item.is_custom),
        },
    }


def build_object_detail(item: ObjectMetadataItem) -> dict:
    """Everything the object detail page renders, minus the widgets."""
    active = active_fields(item)
    inactive = inactive_fields(item)
    sections = []
    if active:
        sections.append(
            {
                "title": "Active",
                "initially_expanded": True,
                "rows": [_active_row(f, item) for f in active],
            }
        )
    if inactive:
        sections.append(
            {
                "title": "Inactive",
                "initially_expanded": False,
                "rows": [_inactive_row(f, item) for f in inactive],
            }
        )
    return {
        "object_id": item.id,
        "slug": get_object_slug(item),
        "breadcrumb": [
            {"label": "Objects", "href": OBJECTS_PATH},
            {"label": item.label_plural, "href": None},
        ],
        "about": {
            "name": item.label_plural or "",
            "icon": item.icon or "",
            "is_custom": item.is_custom,
            "tag": {"text": "Custom", "color": "orange"} if item.is_custom else {"text": "Standard", "color": "blue"},
            "actions": ["edit", "deactivate"],
        },
        "fields_title": "Fields",
        "fields_description": (
            f"Customise the fields available in the {item.label_singular} views and their display order "
            f"in the {item.label_singular} detail view and menus."
        ),
        "columns": ["Name", "Identifier" if item.is_custom else "Field type", "Data type", ""],
        "sections": sections,
        "add_field_path": NEW_FIELD_STEP_1 if inactive else NEW_FIELD_STEP_2,
    }


class ObjectSettingsService:
    def __init__(self, store: Any) -> None:
        self._store = store

    def find_active_object_by_slug(self, ctx: TenantContext, object_slug: str) -> ObjectMetadataItem:
        for item in self._store.list_objects(ctx):
            if item.is_active and not item.is_system and get_object_slug(item) == object_slug:
                return item
        raise ObjectMetadataNotFound(f"Object not found: {object_slug}")

    def _find_field(self, item: ObjectMetadataItem, field_id: str) -> FieldMetadataItem:
        for field_item in item.fields:
            if field_item.id == field_id and not field_item.is_system:
                return field_item
        raise FieldMetadataNotFound(f"Field not found: {field_id}")

    def get_object_detail(self, ctx: TenantContext, object_slug: str) -> dict:
        return build_object_detail(self.find_active_object_by_slug(ctx, object_slug))

    def deactivate_object(self, ctx: TenantContext, object_slug: str) -> str:
        item = self.find_active_object_by_slug(ctx, object_slug)
        self._store.update_object(ctx, item.id, {"is_active": False})
        logger.info("object_deactivated workspace_id=%s object_id=%s", ctx.workspace_id, item.id)
        return OBJECTS_PATH

    def set_label_identifier_field(self, ctx: TenantContext, object_slug: str, field_id: str) -> ObjectMetadataItem:
        item = self.find_active_object_by_slug(ctx, object_slug)
        field_item = self._find_field(item, field_id)
        if not field_item.is_active or not can_be_set_as_label_identifier(field_item, item):
            raise MetadataCommandError("LABEL_IDENTIFIER_NOT_ALLOWED", "Field cannot be used as the record label")
        updated = self._store.update_object(ctx, item.id, {"label_identifier_field_metadata_id": field_item.id})
        return updated or item

    def deactivate_field(self, ctx: TenantContext, object_slug: str, field_id: str) -> FieldMetadataItem:
        item = self.find_active_object_by_slug(ctx, object_slug)
        field_item = self._find_field(item, field_id)
        if is_label_identifier_field(field_item, item):
            raise MetadataCommandError("FIELD_IS_LABEL_IDENTIFIER", "The record label field cannot be deactivated")
        return self._store.update_field(ctx, field_item.id, {"is_active": False}) or field_item

    def activate_field(self, ctx: TenantContext, object_slug: str, field_id: str) -> FieldMetadataItem:
        item = self.find_active_object_by_slug(ctx, object_slug)
        field_item = self._find_field(item, field_id)
        return self._store.update_field(ctx, field_item.id, {"is_active": True}) or field_item

    def erase_field(self, ctx: TenantContext, object_slug: str, field_id: str) -> None:
        item = self.find_active_object_by_slug(ctx, object_slug)
        field_item = self._find_field(item, field_id)
        if field_item.is_active:
            raise MetadataCommandError("FIELD_IS_ACTIVE", "Deactivate the field before erasing it")
        if not field_item.is_custom:
            raise MetadataCommandError("FIELD_IS_STANDARD", "Standard fields cannot be erased")
        self._store.delete_field(ctx, field_item.id)
        logger.info("field_erased workspace_id=%s object_id=%s field_id=%s", ctx.workspace_id, item.id, field_item.id)
