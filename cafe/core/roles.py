from __future__ import annotations

import enum


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    CHEF = "CHEF"
    WAITER = "WAITER"
    CUSTOMER = "CUSTOMER"

    @classmethod
    def parse(cls, value: "str | Role | None") -> "Role | None":
        """Aceita "chef", "CHEF" e o formato legado "ROLE_CHEF"."""
        if isinstance(value, Role):
            return value
        raw = (value or "").strip().upper()
        if raw.startswith("ROLE_"):
            raw = raw[len("ROLE_"):]
        try:
            return cls(raw)
        except ValueError:
            return None


STAFF_ROLES = frozenset({Role.ADMIN, Role.CHEF, Role.WAITER})
