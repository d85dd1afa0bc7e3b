"""
Credential resolution for the UpCloud API.

A credential is either given inline or read from a file; the two are
mutually exclusive. File contents are trimmed of surrounding whitespace.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from upcloud_receiver.core.errors import SecretResolutionError

logger = structlog.get_logger()


def resolve_secret(
    inline_value: str,
    file_path: str,
    inline_name: str,
    file_name: str,
) -> str:
    """
    Resolve a secret from an inline value or a file.

    Args:
        inline_value: Inline secret value (may be blank)
        file_path: Path to a file holding the secret (may be blank)
        inline_name: Config key of the inline value, used in errors
        file_name: Config key of the file path, used in errors

    Returns:
        The secret, or an empty string when neither source is set

    Raises:
        SecretResolutionError: If both sources are set, or the file cannot
            be read or is empty after trimming
    """
    value = (inline_value or "").strip()
    trimmed_file = (file_path or "").strip()
    if value and trimmed_file:
        raise SecretResolutionError(f"{inline_name} and {file_name} are mutually exclusive")
    if value:
        return value
    if not trimmed_file:
        return ""

    try:
        raw = Path(trimmed_file).read_text()
    except OSError as exc:
        raise SecretResolutionError(f"read {file_name}: {exc}") from exc

    secret = raw.strip()
    if not secret:
        raise SecretResolutionError(f"{file_name} is empty")

    logger.debug("secret_loaded_from_file", key=file_name)
    return secret
