from datetime import datetime, timezone

from support_bot.services.session_registry import SessionRegistry


def get_system_health(registry: SessionRegistry) -> dict:
    """Session counts for the health endpoint."""
    return {
        "status": "ok",
        "sessions": registry.stats(),
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }
