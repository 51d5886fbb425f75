"""Tests for the permission table and grid normalisation."""

from __future__ import annotations

from uuid import uuid4

import pytest

from leaddesk.admin.permissions import DEFAULT_GRANTS, PermissionTable, normalize_grid
from leaddesk.app.errors import ForbiddenError, NotFoundError, ValidationError
from leaddesk.core.types import GRID_SHAPE, Action, AdminRole, Resource


class TestDefaultGrants:
    def test_one_grant_per_role(self):
        assert set(DEFAULT_GRANTS) == set(AdminRole)

    def test_every_grid_has_full_shape(self):
        for grid in DEFAULT_GRANTS.values():
            assert set(grid) == {r.value for r in GRID_SHAPE}
            for resource, actions in GRID_SHAPE.items():
                assert set(grid[resource.value]) == {a.value for a in actions}

    def test_view_mode_reads_leads_only(self):
        grid = DEFAULT_GRANTS[AdminRole.VIEW_MODE]
        assert grid["leads"]["read"] is True
        assert grid["leads"]["update"] is False
        assert grid["analytics"]["view"] is False

    def test_super_admin_sees_audit_logs(self):
        assert DEFAULT_GRANTS[AdminRole.SUPER_ADMIN]["auditLogs"]["view"] is True
        assert DEFAULT_GRANTS[AdminRole.ADMIN]["auditLogs"]["view"] is False


class TestNormalizeGrid:
    def test_omitted_flags_become_false(self):
        grid = normalize_grid({"leads": {"read": True}})
        assert grid["leads"] == {"create": False, "delete": False, "read": True, "update": False}
        assert grid["auditLogs"] == {"view": False}

    def test_rejects_unknown_resource(self):
        with pytest.raises(ValidationError, match="Unknown permission resource"):
            normalize_grid({"invoices": {"read": True}})

    def test_rejects_unknown_action(self):
        with pytest.raises(ValidationError, match="Unknown action"):
            normalize_grid({"analytics": {"read": True}})

    def test_rejects_non_boolean_flag(self):
        with pytest.raises(ValidationError, match="must be a boolean"):
            normalize_grid({"leads": {"read": "yes"}})

    def test_rejects_non_object(self):
        with pytest.raises(ValidationError):
            normalize_grid(["leads"])


class TestPermissionTable:
    def test_seed_is_idempotent(self, stack):
        # The stack fixture has already seeded once
        assert stack.permission_table.seed() == 0
        assert stack.role_permissions.count_all() == len(AdminRole)
    def test_seed_inserts_all_roles(self, stack):
        stack.role_permissions.grants.clear()
        table = PermissionTable(stack.role_permissions)
        assert not table.is_seeded()
        assert table.seed() == len(AdminRole)
        assert table.is_seeded()

    def test_allows_reads_stored_flag(self, stack):
        table = stack.permission_table
        assert table.allows(AdminRole.ADMIN, Resource.ANALYTICS, Action.VIEW)
        assert not table.allows(AdminRole.EDIT_MODE, Resource.LEADS, Action.DELETE)

    def test_allows_missing_grant_is_false(self, stack):
        stack.role_permissions.grants.pop(AdminRole.EDIT_MODE)
        assert not stack.permission_table.allows(AdminRole.EDIT_MODE, Resource.LEADS, Action.READ)

    def test_set_grant_returns_before_and_after(self, stack):
        actor = uuid4()
        before, after = stack.permission_table.set_grant(
            AdminRole.EDIT_MODE,
            {"leads": {"read": True}},
            actor,
        )
        assert before.grid["leads"]["update"] is True
        assert after.grid["leads"]["update"] is False
        assert after.updated_by == actor
        assert not stack.permission_table.allows(AdminRole.EDIT_MODE, Resource.LEADS, Action.UPDATE)

    def test_super_admin_grant_is_immutable(self, stack):
        with pytest.raises(ForbiddenError, match="cannot be modified"):
            stack.permission_table.set_grant(AdminRole.SUPER_ADMIN, {}, None)

    def test_get_missing_grant(self, stack):
        stack.role_permissions.grants.pop(AdminRole.VIEW_MODE)
        with pytest.raises(NotFoundError):
            stack.permission_table.get_grant(AdminRole.VIEW_MODE)

    def test_list_grants_in_role_order(self, stack):
        roles = [g.role for g in stack.permission_table.list_grants()]
        assert roles == list(AdminRole)
