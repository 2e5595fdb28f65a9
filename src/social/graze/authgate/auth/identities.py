from typing import Optional


def normalize_identity(identity: str) -> str:
    """Session cache key for an identity: trimmed and lower-cased."""
    return identity.strip().lower()


def mask_identity(identity: Optional[str]) -> str:
    """
    Mask an identity for log output.

    Keeps the first two characters of the local part and the full domain, so
    `someone@example.com` becomes `so****@example.com`. Local parts of two
    characters or fewer are masked entirely. Values without an `@` are masked
    the same way as a local part.
    """
    if not identity:
        return "-"

    local, sep, domain = identity.partition("@")
    if len(local) > 2:
        masked = local[:2] + "*" * min(len(local) - 2, 4)
    else:
        masked = "*" * len(local)
    return f"{masked}{sep}{domain}"
