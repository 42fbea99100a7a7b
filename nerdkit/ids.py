"""Random container identifiers and identifier validation."""

import re
import secrets

ID_LENGTH = 64

_MAX_IDENTIFIER_LENGTH = 76
_IDENTIFIER_RE = re.compile(r"[A-Za-z0-9]+(?:[._-][A-Za-z0-9]+)*")


class InvalidIdentifierError(ValueError):
    """Raised when a name is not a valid identifier."""


def generate_id() -> str:
    """Return a random identifier of ID_LENGTH lower-case hex digits."""
    return secrets.token_hex(ID_LENGTH // 2)


def validate_identifier(name: str) -> None:
    """Raise InvalidIdentifierError unless *name* is a valid identifier.

    An identifier is 1 to 76 characters of alphanumeric runs separated by
    single '.', '_' or '-' characters.
    """
    if not name:
        raise InvalidIdentifierError("identifier must not be empty")
    if len(name) > _MAX_IDENTIFIER_LENGTH:
        raise InvalidIdentifierError(
            f"identifier {name!r} greater than maximum length "
            f"({_MAX_IDENTIFIER_LENGTH} characters)"
        )
    if not _IDENTIFIER_RE.fullmatch(name):
        raise InvalidIdentifierError(
            f"identifier {name!r} must match {_IDENTIFIER_RE.pattern}"
        )