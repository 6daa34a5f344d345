# API Routes Module
from subscribe_save.api.routes import (
    cron,
    pickups,
    plans,
    subscriptions,
    webhooks,
)

__all__ = [
    "cron",
    "pickups",
    "plans",
    "subscriptions",
    "webhooks",
]
