"""
Access profiles for the operations the vault exposes.

Each operation declares one EndpointProfile. The set is closed: adding an
operation means adding a member here, and ``authorize`` handles every
member explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional

from .exceptions import AuthorizationError, MethodNotAllowedError


@dataclass(frozen=True)
class ProfilePolicy:
    description: str
    require_auth: bool
    allowed_methods: FrozenSet[str]


class EndpointProfile(Enum):
    IDENTITY = ProfilePolicy("derive or retrieve own identity", True, frozenset({"POST"}))
    GROUP_MEMBER = ProfilePolicy("add a commitment", True, frozenset({"POST"}))
    GROUP_DATA = ProfilePolicy("read group state", True, frozenset({"GET"}))
    PROOF_GENERATION = ProfilePolicy("build proof inputs", True, frozenset({"POST"}))
    PROOF_VERIFICATION = ProfilePolicy("verify a proof", False, frozenset({"POST"}))
    GROUP_RESET = ProfilePolicy("reset the group", True, frozenset({"POST"}))

    @property
    def policy(self) -> ProfilePolicy:
        return self.value


def authorize(
    profile: EndpointProfile,
    method: str,
    principal: Optional[object],
) -> None:
    """
    Check a call against its profile.

    Args:
        profile: Profile of the operation being invoked
        method: Transport verb (``GET``/``POST``/...); ``OPTIONS`` is a
            preflight and always passes
        principal: Authenticated principal, or None

    Raises:
        MethodNotAllowedError: If the verb is not allowed
        AuthorizationError: If the profile needs a principal and none is given
    """
    if not isinstance(profile, EndpointProfile):
        raise TypeError(f"profile must be EndpointProfile, got {type(profile)}")

    verb = (method or "").upper()
    if verb == "OPTIONS":
        return

    policy = profile.policy
    if verb not in policy.allowed_methods:
        raise MethodNotAllowedError(
            f"{verb or 'missing method'} not allowed for {profile.name}"
        )
    if policy.require_auth and principal is None:
        raise AuthorizationError(f"{profile.name} requires an authenticated principal")
