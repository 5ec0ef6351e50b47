"""Record categories and mutation kinds tracked by the durability layer."""
from enum import Enum


class EntityType(str, Enum):
    """Closed set of record kinds. Values are the app's storage keys."""

    FEEDING = "feeding"
    SLEEP = "sleep"
    NAPPY = "nappy"  # diaper change
    MILESTONE = "milestone"
    WEIGHT = "weight"
    HEIGHT = "height"
    VACCINATION = "vaccination"
    APPOINTMENT = "appointment"
    REMINDER = "reminder"
    MOOD = "mood"
    SELF_CARE = "selfCare"


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
