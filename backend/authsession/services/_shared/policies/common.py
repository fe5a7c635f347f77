import hashlib

# Column widths of ``refresh_tokens`` for client-supplied values
DEVICE_ID_MAX_LENGTH = 128
USER_AGENT_MAX_LENGTH = 512
IP_ADDRESS_MAX_LENGTH = 45


def device_fingerprint(ip_address: str | None, user_agent: str | None) -> str:
    """Derive a stable device id from client address and user agent."""
    raw = f"{(ip_address or '').strip()}|{(user_agent or '').strip()}"
    return "fp:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def normalize_device_id(device_id: str) -> str:
    """Return ``device_id`` unchanged, or a stable hash when it would not fit the column."""
    if len(device_id) <= DEVICE_ID_MAX_LENGTH:
        return device_id
    return "dh:" + hashlib.sha256(device_id.encode("utf-8")).hexdigest()[:32]


def clip(value: str | None, limit: int) -> str | None:
    """Cut an audit-only client value down to ``limit`` characters."""
    return value[:limit] if value else value


def obfuscate(secret: str | None, visible: int = 6) -> str:
    """Return a log-safe rendering of a bearer secret."""
    if not secret:
        return "<empty>"
    if len(secret) <= visible:
        return "***"
    return f"{secret[:visible]}***"
