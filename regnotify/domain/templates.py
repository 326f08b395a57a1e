from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
import re

import yaml

from regnotify.domain.errors import DomainValidationError
from regnotify.domain.models import MessageTemplate, TemplateType

PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")
DEFAULT_TEMPLATES_PATH = Path(__file__).resolve().parents[1] / "messages" / "templates.v1.yaml"

REGISTRATION_FIELDS: tuple[str, ...] = (
    "registration_no",
    "name",
    "village",
    "state",
    "mobile",
    "position",
    "age",
    "gender",
    "male_members",
    "female_members",
    "child_members",
    "total_members",
    "connected",
)

# Aggregates injected at render time, never persisted on the tracking row.
AGGREGATE_FIELDS: tuple[str, ...] = ("total_registrations", "today_registrations")

KNOWN_FIELDS: dict[TemplateType, frozenset[str]] = {
    TemplateType.REGISTRATION_CONFIRMATION: frozenset(REGISTRATION_FIELDS),
    TemplateType.ADMIN_NOTIFICATION: frozenset(REGISTRATION_FIELDS + AGGREGATE_FIELDS),
    TemplateType.BARCODE_MESSAGE: frozenset(REGISTRATION_FIELDS),
    TemplateType.CHANGE_REQUEST: frozenset(REGISTRATION_FIELDS),
}


def render_template(template: str, values: Mapping[str, object], *, emphasis: str = "*") -> str:
    """Substitute every known ``{field}`` occurrence; unknown placeholders stay as written."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        value = values[key]
        text = "" if value is None else str(value)
        return f"{emphasis}{text}{emphasis}"

    return PLACEHOLDER_RE.sub(_replace, template)


def extract_placeholders(template: str) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for match in PLACEHOLDER_RE.finditer(template):
        seen.setdefault(match.group(1), None)
    return tuple(seen)


def validate_template(*, template_type: TemplateType, message_text: str) -> None:
    if not message_text.strip():
        raise DomainValidationError("template text must not be empty")
    unknown = [name for name in extract_placeholders(message_text) if name not in KNOWN_FIELDS[template_type]]
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise DomainValidationError(f"unknown placeholders for {template_type.value}: {joined}")


def load_default_templates(*, file_path: str | Path = DEFAULT_TEMPLATES_PATH) -> tuple[MessageTemplate, ...]:
    data = yaml.safe_load(Path(file_path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("templates file must be a YAML object")
    return parse_default_templates(data)


def parse_default_templates(data: dict[str, object]) -> tuple[MessageTemplate, ...]:
    items = data.get("templates")
    if not isinstance(items, list) or not items:
        raise ValueError("templates must be a non-empty list")

    templates: list[MessageTemplate] = []
    seen: set[TemplateType] = set()
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValueError(f"templates[{index}] must be an object")
        raw_type = _required_str(item, "template_type", index=index)
        try:
            template_type = TemplateType(raw_type)
        except ValueError as exc:
            raise ValueError(f"templates[{index}].template_type is unknown: {raw_type}") from exc
        if template_type in seen:
            raise ValueError(f"templates[{index}].template_type is duplicated: {raw_type}")
        seen.add(template_type)

        message_text = _required_str(item, "message_text", index=index).strip()
        try:
            validate_template(template_type=template_type, message_text=message_text)
        except DomainValidationError as exc:
            raise ValueError(f"templates[{index}]: {exc}") from exc
        templates.append(
            MessageTemplate(
                template_type=template_type,
                name=_required_str(item, "name", index=index),
                message_text=message_text,
            )
        )

    missing = set(TemplateType) - seen
    if missing:
        joined = ", ".join(sorted(item.value for item in missing))
        raise ValueError(f"templates file is missing types: {joined}")
    return tuple(templates)


def _required_str(data: dict[str, object], key: str, *, index: int) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"templates[{index}].{key} must be a non-empty string")
    return value
