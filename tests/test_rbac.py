"""Tests for role-based access control decisions."""

import pytest

from tablegate.core.rbac import Rbac


@pytest.fixture
def rbac() -> Rbac:
    return Rbac(
        {
            "admin": {"*": ["list", "read", "create", "update", "delete"]},
            "readonly": {"*": ["list", "read"], "orders": []},
            "support": {"*": ["list"], "users": ["read"]},
        }
    )


def test_wildcard_allows_listed_actions(rbac: Rbac) -> None:
    assert rbac.is_allowed("admin", "products", "create") is True
    assert rbac.is_allowed("readonly", "products", "read") is True
    assert rbac.is_allowed("readonly", "products", "delete") is False


def test_explicit_empty_entry_denies_despite_wildcard(rbac: Rbac) -> None:
    assert rbac.is_allowed("readonly", "orders", "list") is False


def test_exact_entry_replaces_wildcard(rbac: Rbac) -> None:
    assert rbac.is_allowed("support", "users", "read") is True
    assert rbac.is_allowed("support", "users", "list") is False
    assert rbac.is_allowed("support", "orders", "list") is True


def test_unknown_role_is_denied(rbac: Rbac) -> None:
    assert rbac.is_allowed("ghost", "products", "list") is False


def test_no_wildcard_and_no_entry_is_denied() -> None:
    rbac = Rbac({"users_manager": {"users": ["list"]}})

    assert rbac.is_allowed("users_manager", "orders", "list") is False


def test_policy_is_immutable(rbac: Rbac) -> None:
    with pytest.raises(TypeError):
        rbac.roles["admin"]["*"] = frozenset()  # type: ignore[index]


def test_with_grants_extends_roles_without_mutating_original(rbac: Rbac) -> None:
    granted = rbac.with_grants({"reports": {"support": ["read"]}})

    assert granted.is_allowed("support", "reports", "read") is True
    # The new exact entry keeps what the wildcard already allowed.
    assert granted.is_allowed("support", "reports", "list") is True
    assert rbac.is_allowed("support", "reports", "read") is False


def test_with_grants_adds_new_role() -> None:
    granted = Rbac({}).with_grants({"orders": {"auditor": ["list"]}})

    assert granted.is_allowed("auditor", "orders", "list") is True
    assert granted.is_allowed("auditor", "orders", "read") is False


def test_with_grants_keeps_configured_explicit_deny(rbac: Rbac) -> None:
    granted = rbac.with_grants({"orders": {"readonly": ["list"]}})

    assert granted.is_allowed("readonly", "orders", "list") is False


def test_with_grants_unions_existing_entry(rbac: Rbac) -> None:
    granted = rbac.with_grants({"users": {"support": ["update"]}})

    assert granted.is_allowed("support", "users", "read") is True
    assert granted.is_allowed("support", "users", "update") is True
