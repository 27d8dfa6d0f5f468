"""Role-based access control.

Authorization is a pure lookup over (role, table, action). The policy is built
once at startup from static configuration plus plugin grants and is immutable
afterwards.

Decision rules:
- Unknown role: deny.
- Exact table entry present: an empty entry is an explicit deny, even when the
  wildcard would allow the action; otherwise allow iff the action is listed.
  The exact entry replaces the wildcard, it is never unioned with it.
- No exact entry: allow iff the wildcard (``*``) entry lists the action.
- Neither: deny.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType

logger = logging.getLogger(__name__)

WILDCARD = "*"

RolePolicy = Mapping[str, frozenset[str]]
PermissionGrants = Mapping[str, Mapping[str, Iterable[str]]]


def _freeze(roles: Mapping[str, Mapping[str, Iterable[str]]]) -> Mapping[str, RolePolicy]:
    return MappingProxyType(
        {
            role: MappingProxyType({table: frozenset(actions) for table, actions in tables.items()})
            for role, tables in roles.items()
        }
    )


class Rbac:
    """Immutable role/permission policy."""

    def __init__(self, roles: Mapping[str, Mapping[str, Iterable[str]]]) -> None:
        self._roles = _freeze(roles)

    @property
    def roles(self) -> Mapping[str, RolePolicy]:
        return self._roles

    def is_allowed(self, role: str, table: str, action: str) -> bool:
        perms = self._roles.get(role)
        if perms is None:
            return False

        if table in perms:
            # Empty set is an explicit deny that wins over the wildcard.
            return action in perms[table]

        wildcard = perms.get(WILDCARD)
        return wildcard is not None and action in wildcard

    def with_grants(self, grants: PermissionGrants) -> "Rbac":
        """Return a new policy with plugin grants layered on top.

        Grants only extend the configured roles. When a grant introduces an
        exact table entry for a role that previously relied on its wildcard,
        the wildcard actions are carried into the new entry so the role does
        not lose access. Explicit deny entries from configuration are kept.

        Args:
            grants: Mapping of table -> role -> actions.

        Returns:
            Rbac: New policy instance; ``self`` is unchanged.
        """
        merged: dict[str, dict[str, set[str]]] = {
            role: {table: set(actions) for table, actions in tables.items()}
            for role, tables in self._roles.items()
        }

        for table, by_role in grants.items():
            for role, actions in by_role.items():
                tables = merged.setdefault(role, {})
                if table in tables and not tables[table] and table != WILDCARD:
                    logger.warning(
                        "rbac.grant_ignored_explicit_deny",
                        extra={"table": table, "role": role},
                    )
                    continue
                if table not in tables:
                    tables[table] = set(tables.get(WILDCARD, set()))
                tables[table].update(actions)

        return Rbac(merged)
