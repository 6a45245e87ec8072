"""Small helpers shared across modules."""


def mask_identifier(identifier: str) -> str:
    """Mask an identifier for logs: ``j***n@example.com``, ``+***7``."""
    local, sep, domain = identifier.partition("@")
    if len(local) <= 2:
        masked_local = local[:1] + "***"
    else:
        masked_local = local[0] + "***" + local[-1]
    return f"{masked_local}{sep}{domain}"
