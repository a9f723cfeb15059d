import re
from ast import literal_eval
from typing import Any, Dict, Tuple

from .errors import CommandError

PARAMETER_PATTERN = re.compile(
    r"^\s*(?P<name>`[^`]+`|[\w$]+)\s*(?:=>|:)\s*(?P<value>.+?)\s*$", re.DOTALL
)
CYPHER_LITERALS = {"true": True, "false": False, "null": None}


class ParameterMap:
    """Query parameters set with `:param` or `-P`, sent with every statement."""

    def __init__(self):
        self._values: Dict[str, Any] = {}

    def set_parameter(self, expression: str) -> Tuple[str, Any]:
        """
        Parses and stores `name => value`.

        Values are literals: numbers, quoted strings, lists, maps and
        true/false/null.
        """
        match = PARAMETER_PATTERN.match(expression)
        if not match:
            raise CommandError(
                f"Incorrect usage.\nusage: :param name => value (got '{expression}')"
            )
        name = match.group("name").strip("`")
        value = self._evaluate(match.group("value"))
        self._values[name] = value
        return name, value

    def _evaluate(self, text: str) -> Any:
        lowered = text.lower()
        if lowered in CYPHER_LITERALS:
            return CYPHER_LITERALS[lowered]
        try:
            return literal_eval(text)
        except (ValueError, SyntaxError) as e:
            raise CommandError(f"Could not evaluate parameter value: {text}") from e

    def get(self, name: str) -> Any:
        if name not in self._values:
            raise CommandError(f"Unknown parameter: {name}")
        return self._values[name]

    def all(self) -> Dict[str, Any]:
        return dict(self._values)

    def __len__(self) -> int:
        return len(self._values)
