import base64
import binascii
import json
import re
from typing import Optional

_ANSI = re.compile(r"\x1b\[[0-9;]*m")


class CredentialMismatchError(ValueError):
    """The privileged key belongs to a different backend project."""


def clean_key(value: str) -> str:
    """Strip ANSI color codes and whitespace picked up from CLI output."""
    return _ANSI.sub("", value).strip()


def extract_project_ref(token: Optional[str]) -> Optional[str]:
    """Return the ``ref`` claim of a signed token, or None if it is not decodable."""
    if not token or not isinstance(token, str):
        return None
    parts = token.strip().split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if not isinstance(claims, dict):
        return None
    ref = claims.get("ref")
    return ref if isinstance(ref, str) else None


def verify_key_for_project(service_role_key: Optional[str], project_ref: Optional[str]) -> None:
    """Raise CredentialMismatchError when a decodable key names another project."""
    key_ref = extract_project_ref(service_role_key)
    if key_ref is None:
        return
    if key_ref != project_ref:
        raise CredentialMismatchError(
            f"Service role key belongs to project '{key_ref}', "
            f"but the INFRA-DB project is '{project_ref}'"
        )
