# Alerts Module
from .cooldown import CooldownBackend, MemoryCooldown, RedisCooldown
from .manager import AlertManager, default_rules

__all__ = [
    "CooldownBackend",
    "MemoryCooldown",
    "RedisCooldown",
    "AlertManager",
    "default_rules",
]
