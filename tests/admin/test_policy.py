"""Tests for the policy evaluator: role gate, ownership gate and grid gate."""

from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest

from leaddesk.admin.policy import (
    GRID_OPERATIONS,
    REASON_RESTRICTED,
    REASON_ROLE,
    REASON_UNKNOWN,
    REASON_UNSEEDED,
    ROUTE_WHITELIST,
    PolicyEvaluator,
)
from leaddesk.app.errors import ForbiddenError
from leaddesk.core.types import Action, AdminRole, Resource
from leaddesk.metrics.collector import AUTHZ_DENIALS


def _lead(assigned_to=None):
    return SimpleNamespace(id=uuid4(), assigned_to=assigned_to)


def _restrict(stack, enabled=True):
    stack.setting_store.update("restrictLeadEditing", enabled, None)


class TestRoleGate:
    @pytest.mark.parametrize(
        ("role", "resource", "action", "allowed"),
        [
            (AdminRole.VIEW_MODE, Resource.LEADS, Action.READ, True),
            (AdminRole.VIEW_MODE, Resource.LEADS, Action.UPDATE, False),
            (AdminRole.EDIT_MODE, Resource.LEADS, Action.CREATE, True),
            (AdminRole.EDIT_MODE, Resource.LEADS, Action.UPDATE, True),
            (AdminRole.EDIT_MODE, Resource.LEADS, Action.DELETE, False),
            (AdminRole.ADMIN, Resource.LEADS, Action.DELETE, True),
            (AdminRole.ADMIN, Resource.ADMINS, Action.READ, True),
            (AdminRole.ADMIN, Resource.ADMINS, Action.CREATE, False),
            (AdminRole.ADMIN, Resource.PERMISSIONS, Action.UPDATE, False),
            (AdminRole.SUPER_ADMIN, Resource.PERMISSIONS, Action.UPDATE, True),
            (AdminRole.SUPER_ADMIN, Resource.AUDIT_LOGS, Action.VIEW, True),
            (AdminRole.ADMIN, Resource.AUDIT_LOGS, Action.VIEW, False),
            (AdminRole.VIEW_MODE, Resource.ACTIVITY_LOGS, Action.CREATE, True),
        ],
    )
    def test_whitelist(self, stack, role, resource, action, allowed):
        assert stack.policy.authorize(role, resource, action).allowed is allowed

    def test_unknown_operation_denied(self, stack):
        decision = stack.policy.authorize(AdminRole.SUPER_ADMIN, Resource.USERS, Action.VIEW)
        assert not decision.allowed
        assert decision.reason == REASON_UNKNOWN

    def test_role_denial_reason(self, stack):
        decision = stack.policy.authorize(AdminRole.VIEW_MODE, Resource.LEADS, Action.DELETE)
        assert decision.reason == REASON_ROLE

    def test_whitelist_is_independent_of_grid(self, stack):
        # Revoke leads.read from ViewMode in the grid; the route gate is unaffected
        stack.permission_table.set_grant(AdminRole.VIEW_MODE, {}, None)
        assert stack.policy.authorize(AdminRole.VIEW_MODE, Resource.LEADS, Action.READ).allowed

    def test_grid_operations_not_whitelisted_for_analytics(self):
        assert (Resource.ANALYTICS, Action.VIEW) in GRID_OPERATIONS
        assert (Resource.ANALYTICS, Action.VIEW) not in ROUTE_WHITELIST


class TestOwnershipGate:
    def test_unrestricted_allows_any_lead(self, stack):
        actor = uuid4()
        decision = stack.policy.authorize(
            AdminRole.EDIT_MODE,
            Resource.LEADS,
            Action.UPDATE,
            actor_id=actor,
            lead=_lead(uuid4()),
        )
        assert decision.allowed

    def test_restricted_denies_foreign_lead(self, stack):
        _restrict(stack)
        decision = stack.policy.authorize(
            AdminRole.EDIT_MODE,
            Resource.LEADS,
            Action.UPDATE,
            actor_id=uuid4(),
            lead=_lead(uuid4()),
        )
        assert not decision.allowed
        assert decision.restricted
        assert decision.reason == REASON_RESTRICTED

    def test_restricted_denies_unassigned_lead(self, stack):
        _restrict(stack)
        decision = stack.policy.check_ownership(AdminRole.EDIT_MODE, uuid4(), _lead(None))
        assert decision.restricted

    def test_restricted_allows_own_lead(self, stack):
        _restrict(stack)
        actor = uuid4()
        assert stack.policy.check_ownership(AdminRole.EDIT_MODE, actor, _lead(actor)).allowed

    def test_own_lead_compared_as_string(self, stack):
        _restrict(stack)
        actor = uuid4()
        assert stack.policy.check_ownership(AdminRole.EDIT_MODE, str(actor), _lead(actor)).allowed

    @pytest.mark.parametrize("role", [AdminRole.SUPER_ADMIN, AdminRole.ADMIN])
    def test_privileged_roles_bypass_restriction(self, stack, role):
        _restrict(stack)
        assert stack.policy.check_ownership(role, uuid4(), _lead(None)).allowed

    def test_reads_are_not_ownership_gated(self, stack):
        _restrict(stack)
        decision = stack.policy.authorize(
            AdminRole.VIEW_MODE,
            Resource.LEADS,
            Action.READ,
            actor_id=uuid4(),
            lead=_lead(uuid4()),
        )
        assert decision.allowed

    def test_role_gate_runs_before_ownership(self, stack):
        _restrict(stack)
        actor = uuid4()
        decision = stack.policy.authorize(
            AdminRole.VIEW_MODE,
            Resource.LEADS,
            Action.UPDATE,
            actor_id=actor,
            lead=_lead(actor),
        )
        assert decision.reason == REASON_ROLE


class TestGridGate:
    def test_seeded_grant_allows(self, stack):
        assert stack.policy.authorize_grid(AdminRole.ADMIN, Resource.ANALYTICS, Action.VIEW).allowed

    def test_seeded_grant_denies(self, stack):
        decision = stack.policy.authorize_grid(
            AdminRole.VIEW_MODE,
            Resource.ANALYTICS,
            Action.VIEW,
        )
        assert decision.reason == REASON_ROLE

    def test_grid_edit_takes_effect(self, stack):
        stack.permission_table.set_grant(
            AdminRole.VIEW_MODE,
            {"analytics": {"view": True}},
            None,
        )
        assert stack.policy.authorize_grid(
            AdminRole.VIEW_MODE,
            Resource.ANALYTICS,
            Action.VIEW,
        ).allowed

    def test_unseeded_fails_closed(self, stack):
        stack.role_permissions.grants.clear()
        policy = PolicyEvaluator(
            type(stack.permission_table)(stack.role_permissions),
            stack.setting_store,
        )
        decision = policy.authorize_grid(AdminRole.SUPER_ADMIN, Resource.ANALYTICS, Action.VIEW)
        assert decision.reason == REASON_UNSEEDED

    def test_non_grid_operation_denied(self, stack):
        decision = stack.policy.authorize_grid(AdminRole.SUPER_ADMIN, Resource.ADMINS, Action.READ)
        assert decision.reason == REASON_UNKNOWN


class TestEnforce:
    def test_role_denial_raises_403(self, stack):
        with pytest.raises(ForbiddenError, match="does not have permission") as exc_info:
            stack.policy.enforce(uuid4(), AdminRole.VIEW_MODE, Resource.LEADS, Action.DELETE)
        assert exc_info.value.status == 403
        assert exc_info.value.restricted is False

    def test_restricted_denial_is_marked(self, stack):
        _restrict(stack)
        with pytest.raises(ForbiddenError) as exc_info:
            stack.policy.enforce(
                uuid4(),
                AdminRole.EDIT_MODE,
                Resource.LEADS,
                Action.UPDATE,
                lead=_lead(None),
            )
        body = exc_info.value.to_dict()
        assert body["restricted"] is True
        assert body["reason"] == REASON_RESTRICTED

    def test_denials_are_counted(self, stack):
        with pytest.raises(ForbiddenError):
            stack.policy.enforce(uuid4(), AdminRole.VIEW_MODE, Resource.ADMINS, Action.READ)
        assert stack.metrics.get(AUTHZ_DENIALS, labels={"reason": REASON_ROLE}) == 1

    def test_enforce_leads_is_all_or_nothing(self, stack):
        _restrict(stack)
        actor = uuid4()
        leads = [_lead(actor), _lead(actor), _lead(uuid4())]
        with pytest.raises(ForbiddenError):
            stack.policy.enforce_leads(actor, AdminRole.EDIT_MODE, Action.UPDATE, leads)

    def test_enforce_leads_allows_all_owned(self, stack):
        _restrict(stack)
        actor = uuid4()
        stack.policy.enforce_leads(
            actor,
            AdminRole.EDIT_MODE,
            Action.UPDATE,
            [_lead(actor), _lead(actor)],
        )

    def test_enforce_grid_unseeded_message(self, stack):
        stack.role_permissions.grants.clear()
        policy = PolicyEvaluator(
            type(stack.permission_table)(stack.role_permissions),
            stack.setting_store,
        )
        with pytest.raises(ForbiddenError, match="not been initialised"):
            policy.enforce_grid(uuid4(), AdminRole.ADMIN, Resource.ANALYTICS, Action.VIEW)


class TestCapabilities:
    def test_returns_full_grid(self, stack):
        caps = stack.policy.capabilities(AdminRole.EDIT_MODE)
        assert caps["leads"] == {"create": True, "delete": False, "read": True, "update": True}
        assert caps["analytics"] == {"view": False}

    def test_unseeded_is_all_false(self, stack):
        stack.role_permissions.grants.clear()
        policy = PolicyEvaluator(
            type(stack.permission_table)(stack.role_permissions),
            stack.setting_store,
        )
        caps = policy.capabilities(AdminRole.SUPER_ADMIN)
        assert not any(flag for actions in caps.values() for flag in actions.values())
