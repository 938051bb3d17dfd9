"""Unit tests for the permission bit check."""

import pytest

from errors import PermissionDenied
from permissions import Permission, check_permission, describe_roles, has_permission


class TestPermissionBits:
    def test_bit_values(self):
        assert Permission.LIST == 1
        assert Permission.CREATE == 2
        assert Permission.UPDATE == 4
        assert Permission.DELETE == 8
        assert Permission.ALL == 15

    @pytest.mark.parametrize("roles", range(16))
    @pytest.mark.parametrize("required", [1, 2, 4, 8])
    def test_passes_iff_bit_set(self, roles, required):
        if roles & required:
            check_permission(roles, required)
        else:
            with pytest.raises(PermissionDenied):
                check_permission(roles, required)

    def test_combined_roles(self):
        roles = Permission.LIST | Permission.DELETE
        assert has_permission(roles, Permission.DELETE)
        assert not has_permission(roles, Permission.CREATE)

    def test_denied_carries_bits(self):
        with pytest.raises(PermissionDenied) as exc_info:
            check_permission(Permission.LIST, Permission.DELETE)
        assert exc_info.value.required == 8
        assert exc_info.value.roles == 1
        assert exc_info.value.status_code == 403

    def test_describe_roles(self):
        assert describe_roles(Permission.LIST | Permission.UPDATE) == ["list", "update"]
        assert describe_roles(0) == []
