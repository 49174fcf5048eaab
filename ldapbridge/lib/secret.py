"""
Redacting wrapper for passwords and other secrets.
"""

from typing import Any, Optional

REDACTED = "**********"


class Secret:
    """
    Holds a secret string and refuses to render it.

    ``str()``, ``repr()`` and formatting all produce a fixed mask, so a
    Secret can be logged or put in a dictionary that is logged without
    leaking its value. Code that needs the value must ask for it explicitly
    with :meth:`get_secret_value`.
    """

    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        self._value = value

    @staticmethod
    def wrap(value: Optional[Any]) -> Optional["Secret"]:
        """Wrap a value unless it is None or already a Secret."""
        if value is None or isinstance(value, Secret):
            return value
        return Secret(str(value))

    @staticmethod
    def reveal(value: Optional[Any]) -> Optional[str]:
        """Return the plain value of a Secret, or the value itself otherwise."""
        if isinstance(value, Secret):
            return value.get_secret_value()
        return value

    def get_secret_value(self) -> str:
        return self._value

    def __str__(self) -> str:
        return REDACTED

    def __repr__(self) -> str:
        return f"Secret({REDACTED!r})"

    def __format__(self, format_spec: str) -> str:
        return format(REDACTED, format_spec)

    def __bool__(self) -> bool:
        return bool(self._value)

    def __len__(self) -> int:
        return len(self._value)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Secret) and other._value == self._value

    def __hash__(self) -> int:
        return hash(self._value)
