from __future__ import annotations

import jsonschema
from jsonschema.exceptions import best_match

from chatloop.tools.base import Tool, normalize_schema


class ToolValidator:
    @staticmethod
    def validate(tool: Tool, arguments: dict) -> tuple[bool, str | None]:
        """
        Check model-supplied *arguments* against ``tool.parameters``.

        Returns ``(True, None)`` or ``(False, message)``. When the failure is
        below the top level the message is prefixed with the argument path,
        e.g. ``"options/depth: 'x' is not of type 'integer'"``.
        """
        validator = jsonschema.Draft202012Validator(normalize_schema(tool.parameters))
        error = best_match(validator.iter_errors(arguments))
        if error is None:
            return True, None
        location = "/".join(str(part) for part in error.absolute_path)
        return False, f"{location}: {error.message}" if location else error.message
