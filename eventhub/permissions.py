from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

MODULES = (
    "billing",
    "team",
    "programs",
    "accounts",
    "food_court",
    "photos",
    "registrations",
    "survey",
    "stall_enquiry",
    "food_coupon",
)

ACTIONS = ("read", "create", "update", "delete")

SUPER_ADMIN = "super_admin"


@dataclass(frozen=True)
class ModulePermission:
    module: str
    can_read: bool = False
    can_create: bool = False
    can_update: bool = False
    can_delete: bool = False

    def allows(self, action: str) -> bool:
        if action not in ACTIONS:
            raise ValueError(f"unknown action: {action}")
        return getattr(self, f"can_{action}")

    @property
    def any_granted(self) -> bool:
        return self.can_read or self.can_create or self.can_update or self.can_delete


def build_matrix(existing: Iterable[Any]) -> list[ModulePermission]:
    """One entry per known module, filled from stored rows where present."""
    by_module = {row.module: row for row in existing}
    matrix = []
    for module in MODULES:
        row = by_module.get(module)
        if row is None:
            matrix.append(ModulePermission(module=module))
            continue
        matrix.append(
            ModulePermission(
                module=module,
                can_read=bool(row.can_read),
                can_create=bool(row.can_create),
                can_update=bool(row.can_update),
                can_delete=bool(row.can_delete),
            )
        )
    return matrix


def rows_to_persist(matrix: Iterable[ModulePermission]) -> list[ModulePermission]:
    return [perm for perm in matrix if perm.any_granted]


def can(
    role: str,
    permissions: Iterable[ModulePermission],
    module: str,
    action: str,
) -> bool:
    if role == SUPER_ADMIN:
        return True
    perm: Optional[ModulePermission] = next(
        (p for p in permissions if p.module == module), None
    )
    return perm is not None and perm.allows(action)
