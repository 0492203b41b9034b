"""Permission resolution for primary and linked targets."""

from __future__ import annotations

from typing import Optional, Sequence

from ..common.schemas import LinkedAccess


def resolve_permissions(
    declared: Sequence[str],
    defaults: Sequence[str],
    is_primary: bool,
    linked: Optional[LinkedAccess] = None,
) -> list[str]:
    """Return the effective permission set of one service identity in one target.

    The primary target, and any linked target granted ``full`` access, receive
    the repository's declared permissions followed by the provider defaults.
    Every other linked target receives only the linked entry's own permissions
    followed by the defaults. Duplicates are kept; order is significant.
    """

    if is_primary or (linked is not None and linked.is_full):
        return [*declared, *defaults]
    extra = linked.iam_permissions if linked is not None else []
    return [*extra, *defaults]
