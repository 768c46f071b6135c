"""Privilege drop: user and group names to numeric ids, then identity transition.

Only a superuser process changes identity; anywhere else dropping is a no-op.
Every name is resolved before the first identity call, so an unknown name
never leaves a process half transitioned. The transition order is fixed:
group list, then gid, then uid. Once uid is gone the process can no longer
change its groups.
"""

import grp
import os
import pwd
from collections.abc import MutableMapping
from dataclasses import dataclass

from pytend.errors import ConfigurationError
from pytend.models import PrivilegeSpec


@dataclass(slots=True, frozen=True)
class ResolvedIdentity:
    """Numeric form of a PrivilegeSpec, ready to be assumed."""

    uid: int | None = None
    gid: int | None = None
    groups: tuple[int, ...] | None = None  # None leaves the group list alone
    home: str | None = None


def _group_id(name: str) -> int:
    try:
        return grp.getgrnam(name).gr_gid
    except KeyError:
        raise ConfigurationError(f"unknown group {name!r}") from None


def _user_entry(name: str) -> pwd.struct_passwd:
    try:
        return pwd.getpwnam(name)
    except KeyError:
        raise ConfigurationError(f"unknown user {name!r}") from None


def _home_of(uid: int) -> str | None:
    try:
        return pwd.getpwuid(uid).pw_dir or None
    except KeyError:
        return None


def resolve_identity(spec: PrivilegeSpec) -> ResolvedIdentity | None:
    """
    Resolve names in spec to numeric ids.

    Returns None when the current process is not running as root, since there
    is nothing to drop from. Raises ConfigurationError for unknown names.
    """
    if os.geteuid() != 0:
        return None

    gid = _group_id(spec.gid) if spec.gid else None
    supplementary = [_group_id(name) for name in spec.supplementary_groups]
    uid = _user_entry(spec.uid).pw_uid if spec.uid else None

    groups: list[int] | None = [gid] if gid is not None else None
    if supplementary:
        base = groups if groups is not None else os.getgroups()
        groups = base + [g for g in dict.fromkeys(supplementary) if g not in base]

    return ResolvedIdentity(
        uid=uid,
        gid=gid,
        groups=tuple(groups) if groups is not None else None,
        home=_home_of(uid) if uid is not None else None,
    )


def apply_identity(
    identity: ResolvedIdentity,
    environ: MutableMapping[str, str] | None = None,
) -> None:
    """Switch the current process to identity. HOME follows a uid change when known."""
    environ = os.environ if environ is None else environ

    if identity.groups is not None:
        os.setgroups(list(identity.groups))
    if identity.gid is not None:
        os.setgid(identity.gid)
    if identity.uid is not None:
        os.setuid(identity.uid)
        if identity.home:
            environ["HOME"] = identity.home


def drop_privileges(
    uid: str | None = None,
    gid: str | None = None,
    supplementary_groups: tuple[str, ...] | list[str] = (),
    environ: MutableMapping[str, str] | None = None,
) -> ResolvedIdentity | None:
    """
    Drop the current process to the named identity.

    Call this only from a process that is about to become something else; the
    change is permanent. Returns the identity assumed, or None if the process
    was not privileged.
    """
    identity = resolve_identity(
        PrivilegeSpec(uid=uid, gid=gid, supplementary_groups=tuple(supplementary_groups or ()))
    )
    if identity is not None:
        apply_identity(identity, environ)
    return identity
