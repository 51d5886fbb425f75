"""Per-role permission table.

One :class:`~leaddesk.admin.models.RolePermission` row per
:class:`~leaddesk.core.types.AdminRole`, each holding a grid of
``resource -> action -> bool`` flags shaped by
:data:`~leaddesk.core.types.GRID_SHAPE`.

The table is seeded with :data:`DEFAULT_GRANTS` on first start.  Seeding
only runs while the table is empty, so running it repeatedly never
produces more than one row per role.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from leaddesk.app.errors import ForbiddenError, NotFoundError, ValidationError
from leaddesk.core.types import GRID_SHAPE, Action, AdminRole, Resource

if TYPE_CHECKING:
    from uuid import UUID

    from leaddesk.admin.models import RolePermission
    from leaddesk.admin.repository import RolePermissionRepository

log = logging.getLogger(__name__)


def _grid(**allowed: tuple[Action, ...]) -> dict[str, dict[str, bool]]:
    """Build a full grid where only the listed actions are ``True``."""
    grid: dict[str, dict[str, bool]] = {}
    for resource, actions in GRID_SHAPE.items():
        granted = allowed.get(resource.value, ())
        grid[resource.value] = {a.value: a in granted for a in actions}
    return grid


_CRUD = (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE)

DEFAULT_GRANTS: dict[AdminRole, dict[str, dict[str, bool]]] = {
    AdminRole.SUPER_ADMIN: _grid(
        users=_CRUD,
        leads=_CRUD,
        admins=_CRUD,
        analytics=(Action.VIEW,),
        auditLogs=(Action.VIEW,),
    ),
    AdminRole.ADMIN: _grid(
        users=_CRUD,
        leads=_CRUD,
        admins=(Action.READ,),
        analytics=(Action.VIEW,),
    ),
    AdminRole.VIEW_MODE: _grid(leads=(Action.READ,)),
    AdminRole.EDIT_MODE: _grid(leads=(Action.CREATE, Action.READ, Action.UPDATE)),
}


def normalize_grid(raw: Any) -> dict[str, dict[str, bool]]:  # noqa: ANN401
    """Validate a submitted grid and fill omitted flags with ``False``.

    Raises :class:`ValidationError` on unknown resources or actions and
    on non-boolean flags.
    """
    if not isinstance(raw, dict):
        raise ValidationError("'permissions' must be an object")

    known = {r.value: r for r in GRID_SHAPE}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ValidationError(f"Unknown permission resource(s): {', '.join(unknown)}")

    grid: dict[str, dict[str, bool]] = {}
    for name, resource in known.items():
        flags = raw.get(name) or {}
        if not isinstance(flags, dict):
            raise ValidationError(f"Permissions for '{name}' must be an object")
        actions = {a.value for a in GRID_SHAPE[resource]}
        bad = sorted(set(flags) - actions)
        if bad:
            raise ValidationError(f"Unknown action(s) for '{name}': {', '.join(bad)}")
        for action, flag in flags.items():
            if not isinstance(flag, bool):
                raise ValidationError(f"'{name}.{action}' must be a boolean")
        grid[name] = {a: bool(flags.get(a, False)) for a in sorted(actions)}
    return grid


class PermissionTable:
    """Read and replace role grants; seed defaults on an empty table."""

    def __init__(self, repo: RolePermissionRepository) -> None:
        self._repo = repo
        self._seeded = False

    def seed(self) -> int:
        """Insert :data:`DEFAULT_GRANTS` if the table is empty.

        Returns the number of rows inserted (0 when grants already exist).
        """
        if self._repo.count_all() > 0:
            log.debug("Permission grants present, seeding skipped")
            return 0
        inserted = self._repo.insert_if_absent(DEFAULT_GRANTS)
        log.info("Seeded %d default permission grant(s)", inserted)
        return inserted

    def is_seeded(self) -> bool:
        """True once every role has a grant row."""
        if not self._seeded:
            self._seeded = self._repo.count_all() >= len(AdminRole)
        return self._seeded

    def get_grant(self, role: AdminRole) -> RolePermission:
        grant = self._repo.find_by_role(role)
        if grant is None:
            raise NotFoundError(f"No permission grant for role '{role.value}'")
        return grant

    def list_grants(self) -> list[RolePermission]:
        return self._repo.find_all_ordered()

    def allows(self, role: AdminRole, resource: Resource, action: Action) -> bool:
        """Look up a single flag; unknown roles or flags are ``False``."""
        grant = self._repo.find_by_role(role)
        if grant is None:
            return False
        return bool(grant.grid.get(resource.value, {}).get(action.value, False))

    def set_grant(
        self,
        role: AdminRole,
        raw_grid: Any,  # noqa: ANN401
        updated_by: UUID | None,
    ) -> tuple[RolePermission, RolePermission]:
        """Replace the grid for *role*.

        Returns ``(before, after)``.  The SuperAdmin grant cannot be
        modified.
        """
        if role == AdminRole.SUPER_ADMIN:
            raise ForbiddenError(
                "The SuperAdmin permission grant cannot be modified",
                reason="immutable_grant",
            )
        grid = normalize_grid(raw_grid)
        before = self.get_grant(role)
        after = self._repo.replace_grid(role, grid, updated_by)
        if after is None:
            raise NotFoundError(f"No permission grant for role '{role.value}'")
        return before, after
