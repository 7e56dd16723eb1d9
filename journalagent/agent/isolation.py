"""Post-hoc scan for identities other than the caller's in outbound content."""

from __future__ import annotations

import json
import re
from typing import Any

from journalagent.core.errors import IdentityLeakError


_IDENTITY_ASSIGNMENT = re.compile(r"""user[_-]?id['"]?\s*[:=]\s*['"]?([a-zA-Z0-9-]+)""", re.IGNORECASE)


def foreign_identities(content: str, caller_identity: str) -> set[str]:
    caller = caller_identity.strip().lower()
    return {
        match.group(1)
        for match in _IDENTITY_ASSIGNMENT.finditer(content or "")
        if match.group(1).lower() != caller
    }


def ensure_caller_isolation(caller_identity: str, *payloads: Any) -> None:
    """Raise ``IdentityLeakError`` if any payload names a different user id."""

    for payload in payloads:
        content = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False, default=str)
        leaked = foreign_identities(content, caller_identity)
        if leaked:
            raise IdentityLeakError(f"response references {len(leaked)} foreign identity value(s)")
