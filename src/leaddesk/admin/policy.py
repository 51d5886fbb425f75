"""Authorization decisions for the admin API.

Two independent sources decide whether an admin may perform an
operation, and each operation is governed by exactly one of them:

* :data:`ROUTE_WHITELIST` -- a fixed role list per ``(resource, action)``.
  Every CRUD and administration route is gated here.  The list is not
  editable at runtime.
* The :class:`~leaddesk.admin.permissions.PermissionTable` grid -- consulted
  only for the operations in :data:`GRID_OPERATIONS` (analytics summary,
  lead CSV export) and for exposing capabilities to the dashboard.
  Evaluation fails closed while the table is not fully seeded.

On top of the role gate, lead mutations pass an ownership gate: when the
``restrictLeadEditing`` setting is on, roles outside
:data:`~leaddesk.core.types.PRIVILEGED_ROLES` may only mutate leads
assigned to themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from leaddesk.app.errors import ForbiddenError
from leaddesk.core.types import PRIVILEGED_ROLES, Action, AdminRole, Resource
from leaddesk.logging import security_events
from leaddesk.metrics.collector import AUTHZ_DENIALS

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from leaddesk.admin.permissions import PermissionTable
    from leaddesk.admin.settings_store import SettingStore
    from leaddesk.metrics.collector import MetricsCollector

log = logging.getLogger(__name__)

_ALL = frozenset(AdminRole)
_SUPER = frozenset({AdminRole.SUPER_ADMIN})
_PRIVILEGED = frozenset(PRIVILEGED_ROLES)
_EDITORS = frozenset({AdminRole.SUPER_ADMIN, AdminRole.ADMIN, AdminRole.EDIT_MODE})

ROUTE_WHITELIST: dict[tuple[Resource, Action], frozenset[AdminRole]] = {
    (Resource.LEADS, Action.READ): _ALL,
    (Resource.LEADS, Action.CREATE): _EDITORS,
    (Resource.LEADS, Action.UPDATE): _EDITORS,
    (Resource.LEADS, Action.DELETE): _PRIVILEGED,
    (Resource.ADMINS, Action.READ): _PRIVILEGED,
    (Resource.ADMINS, Action.CREATE): _SUPER,
    (Resource.ADMINS, Action.UPDATE): _SUPER,
    (Resource.ADMINS, Action.DELETE): _SUPER,
    (Resource.PERMISSIONS, Action.READ): _SUPER,
    (Resource.PERMISSIONS, Action.UPDATE): _SUPER,
    (Resource.SETTINGS, Action.READ): _ALL,
    (Resource.SETTINGS, Action.UPDATE): _SUPER,
    (Resource.AUDIT_LOGS, Action.VIEW): _SUPER,
    (Resource.ACTIVITY_LOGS, Action.VIEW): _PRIVILEGED,
    (Resource.ACTIVITY_LOGS, Action.CREATE): _ALL,
    (Resource.LOGIN_HISTORY, Action.VIEW): _SUPER,
}

# Operations decided by the permission grid instead of the whitelist
GRID_OPERATIONS: frozenset[tuple[Resource, Action]] = frozenset(
    {
        (Resource.ANALYTICS, Action.VIEW),
        (Resource.LEADS, Action.READ),
    }
)

_LEAD_MUTATIONS = frozenset({Action.CREATE, Action.UPDATE, Action.DELETE})

# Denial reasons
REASON_ROLE = "role_not_permitted"
REASON_UNKNOWN = "unknown_operation"
REASON_UNSEEDED = "permissions_not_seeded"
REASON_RESTRICTED = "restricted"


class LeadContext(Protocol):
    """Anything carrying a lead identity and its assignee."""

    id: UUID
    assigned_to: UUID | None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None

    @property
    def restricted(self) -> bool:
        return self.reason == REASON_RESTRICTED


ALLOW = Decision(allowed=True)


class PolicyEvaluator:
    """Decide, and optionally enforce, admin authorization.

    :meth:`authorize` and :meth:`authorize_grid` return a
    :class:`Decision`; the ``enforce*`` variants raise
    :class:`~leaddesk.app.errors.ForbiddenError` on denial, emit a
    security event and count the denial.
    """

    def __init__(
        self,
        permissions: PermissionTable,
        settings: SettingStore,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._permissions = permissions
        self._settings = settings
        self._metrics = metrics

    # -- decisions -----------------------------------------------------------

    def authorize(
        self,
        role: AdminRole,
        resource: Resource,
        action: Action,
        *,
        actor_id: UUID | None = None,
        lead: LeadContext | None = None,
    ) -> Decision:
        """Role gate, then (for lead mutations with a *lead*) ownership gate."""
        allowed_roles = ROUTE_WHITELIST.get((resource, action))
        if allowed_roles is None:
            return Decision(allowed=False, reason=REASON_UNKNOWN)
        if role not in allowed_roles:
            return Decision(allowed=False, reason=REASON_ROLE)

        if lead is not None and resource == Resource.LEADS and action in _LEAD_MUTATIONS:
            return self.check_ownership(role, actor_id, lead)
        return ALLOW

    def check_ownership(
        self,
        role: AdminRole,
        actor_id: UUID | None,
        lead: LeadContext,
    ) -> Decision:
        """Apply restricted editing to a single lead.

        A lead with no assignee is never editable by a restricted role.
        """
        if role in PRIVILEGED_ROLES:
            return ALLOW
        if not self._settings.restrict_lead_editing():
            return ALLOW
        if lead.assigned_to is None or actor_id is None:
            return Decision(allowed=False, reason=REASON_RESTRICTED)
        if str(lead.assigned_to) != str(actor_id):
            return Decision(allowed=False, reason=REASON_RESTRICTED)
        return ALLOW

    def authorize_grid(
        self,
        role: AdminRole,
        resource: Resource,
        action: Action,
    ) -> Decision:
        """Decide a grid-governed operation from the permission table."""
        if (resource, action) not in GRID_OPERATIONS:
            return Decision(allowed=False, reason=REASON_UNKNOWN)
        if not self._permissions.is_seeded():
            return Decision(allowed=False, reason=REASON_UNSEEDED)
        if not self._permissions.allows(role, resource, action):
            return Decision(allowed=False, reason=REASON_ROLE)
        return ALLOW

    # -- enforcement ---------------------------------------------------------

    def enforce(
        self,
        admin_id: UUID,
        role: AdminRole,
        resource: Resource,
        action: Action,
        *,
        lead: LeadContext | None = None,
    ) -> None:
        decision = self.authorize(role, resource, action, actor_id=admin_id, lead=lead)
        self._raise_if_denied(decision, admin_id, role, resource, action, lead)

    def enforce_leads(
        self,
        admin_id: UUID,
        role: AdminRole,
        action: Action,
        leads: Iterable[LeadContext],
    ) -> None:
        """All-or-nothing ownership check for a bulk lead mutation."""
        self.enforce(admin_id, role, Resource.LEADS, action)
        for lead in leads:
            decision = self.check_ownership(role, admin_id, lead)
            self._raise_if_denied(decision, admin_id, role, Resource.LEADS, action, lead)

    def enforce_grid(
        self,
        admin_id: UUID,
        role: AdminRole,
        resource: Resource,
        action: Action,
    ) -> None:
        decision = self.authorize_grid(role, resource, action)
        self._raise_if_denied(decision, admin_id, role, resource, action, None)

    def capabilities(self, role: AdminRole) -> dict[str, dict[str, bool]]:
        """The stored grid for *role*, or an all-false grid when unseeded."""
        from leaddesk.admin.permissions import normalize_grid  # noqa: PLC0415

        if not self._permissions.is_seeded():
            return normalize_grid({})
        return normalize_grid(self._permissions.get_grant(role).grid)

    def _raise_if_denied(  # noqa: PLR0913
        self,
        decision: Decision,
        admin_id: UUID,
        role: AdminRole,
        resource: Resource,
        action: Action,
        lead: LeadContext | None,
    ) -> None:
        if decision.allowed:
            return

        if self._metrics is not None:
            self._metrics.increment(AUTHZ_DENIALS, labels={"reason": decision.reason})

        if decision.restricted:
            if lead is not None:
                security_events.restricted_edit_denied(admin_id, lead.id)
            raise ForbiddenError(
                "Restricted editing is enabled: you can only modify leads assigned to you",
                reason=REASON_RESTRICTED,
                restricted=True,
            )

        security_events.permission_denied(
            admin_id,
            role.value,
            resource.value,
            action.value,
            decision.reason or REASON_ROLE,
        )
        if decision.reason == REASON_UNSEEDED:
            raise ForbiddenError(
                "Permissions have not been initialised",
                reason=REASON_UNSEEDED,
            )
        raise ForbiddenError(
            f"Role '{role.value}' does not have permission for this action",
            reason=decision.reason,
        )
