from __future__ import annotations

from collections.abc import Iterable

from app.console.modules.metafields.types import MetafieldDefinition


def is_visible(definition: MetafieldDefinition, actor_roles: Iterable[str], actor_is_staff: bool) -> bool:
    """
    public wins; otherwise adminOnly limits to staff; otherwise the actor needs
    one of the listed roles. A definition with none of the three set is hidden
    from everyone (superusers are let through by the caller, not here).
    """
    rules = definition.visibility
    if rules.public:
        return True
    if rules.admin_only:
        return bool(actor_is_staff)
    return not rules.roles.isdisjoint(actor_roles)


def visible_definitions(
    definitions: Iterable[MetafieldDefinition],
    actor_roles: Iterable[str],
    actor_is_staff: bool,
    *,
    bypass: bool = False,
) -> list[MetafieldDefinition]:
    roles = frozenset(actor_roles)
    if bypass:
        return list(definitions)
    return [d for d in definitions if is_visible(d, roles, actor_is_staff)]
