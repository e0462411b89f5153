import json
import re
from typing import Any


_MISSING = object()


class VariableResolver:
    """
    Handles `{{...}}` substitution against a target record and the run context.

    Placeholders are resolved in three passes, in a fixed order, so later passes
    only see what earlier passes left untouched:

        1. {{ <recordType>.<field> }}  - only when <recordType> is the record's type
        2. {{ context.<field> }}
        3. {{ <field> }}               - record first, then context

    A placeholder that cannot be resolved is left verbatim, which keeps
    authoring mistakes visible in the sent email or created task.
    """

    TYPED_PATTERN = re.compile(r"\{\{\s*(\w+)\.(\w+)\s*\}\}")
    CONTEXT_PATTERN = re.compile(r"\{\{\s*context\.(\w+)\s*\}\}")
    FIELD_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")

    @classmethod
    def resolve(cls, text: str, record: dict, context: dict) -> str:
        if not isinstance(text, str) or "{{" not in text:
            return text

        record_type = record.get("type")

        def typed(match: re.Match) -> str:
            entity, key = match.group(1), match.group(2)
            if entity != record_type:
                return match.group(0)
            value = cls._lookup(record, key)
            return match.group(0) if value is _MISSING else cls.stringify(value)

        def contextual(match: re.Match) -> str:
            value = cls._lookup(context, match.group(1))
            return match.group(0) if value is _MISSING else cls.stringify(value)

        def bare(match: re.Match) -> str:
            key = match.group(1)
            value = cls._lookup(record, key)
            if value is _MISSING:
                value = cls._lookup(context, key)
            return match.group(0) if value is _MISSING else cls.stringify(value)

        result = cls.TYPED_PATTERN.sub(typed, text)
        result = cls.CONTEXT_PATTERN.sub(contextual, result)
        return cls.FIELD_PATTERN.sub(bare, result)

    @classmethod
    def resolve_config(cls, config: dict, record: dict, context: dict) -> dict:
        """Recursively resolves every string inside an action config."""
        return {key: cls._resolve_value(value, record, context) for key, value in config.items()}

    @classmethod
    def _resolve_value(cls, value, record: dict, context: dict):
        if isinstance(value, str):
            return cls.resolve(value, record, context)
        elif isinstance(value, dict):
            return cls.resolve_config(value, record, context)
        elif isinstance(value, list):
            return [cls._resolve_value(item, record, context) for item in value]
        else:
            return value

    @staticmethod
    def _lookup(source: dict, key: str):
        if not isinstance(source, dict):
            return _MISSING
        value = source.get(key, _MISSING)
        return _MISSING if value is None else value

    @staticmethod
    def stringify(value: Any) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        if hasattr(value, "isoformat"):
            return value.isoformat()
        return str(value)

    @staticmethod
    def get_field_value(field: str, record: dict, context: dict) -> Any:
        """
        Resolves a dot-path used by conditions.

        `context.a.b` walks the context, `<recordType>.a` walks the record, and
        any other path walks the record and falls back to a flat context key
        when the record has no such field. A field present with a null value
        does not fall back. Missing segments yield None instead of raising.
        """
        parts = field.split(".")

        if parts[0] == "context":
            return _walk(context, parts[1:])

        if parts[0] == record.get("type"):
            return _walk(record, parts[1:])

        value = _walk(record, parts, default=_MISSING)
        if value is _MISSING:
            if isinstance(context, dict) and context.get(field) is not None:
                return context[field]
            return None
        return value


def _walk(source: Any, parts: list[str], default: Any = None) -> Any:
    value = source
    for part in parts:
        if isinstance(value, dict):
            if part not in value:
                return default
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return default
    return value
