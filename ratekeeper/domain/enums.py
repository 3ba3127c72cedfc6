from enum import Enum


class WindowAction(str, Enum):
    CREATE = "create"
    RESET = "reset"
    INCREMENT = "increment"
    DENY = "deny"
