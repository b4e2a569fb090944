"""
Formatting helpers for log lines.

Keeps addresses and hashes short in logs.
"""


def mask_address(address: str | None) -> str:
    """
    Mask wallet address for logging: 0x1234...5678

    Args:
        address: Wallet address to mask

    Returns:
        Masked address showing first 6 and last 4 characters

    Examples:
        >>> mask_address("0x1234567890abcdef1234567890abcdef12345678")
        '0x1234...5678'
        >>> mask_address(None)
        '***'
    """
    if not address or len(address) < 10:
        return "***"
    return f"{address[:6]}...{address[-4:]}"


def short_hash(value: str | None) -> str:
    """Shorten a block or transaction hash: 0xabcdef12...3456."""
    if not value or len(value) < 16:
        return value or "-"
    return f"{value[:10]}...{value[-4:]}"


def format_duration(seconds: float) -> str:
    """Render seconds as 1h 02m 03s."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"
