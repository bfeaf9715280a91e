import pytest

from zk_identity_vault.identity_protocol.exceptions import (
    AuthorizationError,
    MethodNotAllowedError,
)
from zk_identity_vault.identity_protocol.profiles import EndpointProfile, authorize

PRINCIPAL = object()


def test_profiles_are_distinct_members():
    assert len(EndpointProfile) == 6
    assert len({p.policy for p in EndpointProfile}) == 6


def test_only_proof_verification_is_public():
    public = [p for p in EndpointProfile if not p.policy.require_auth]
    assert public == [EndpointProfile.PROOF_VERIFICATION]


@pytest.mark.parametrize(
    "profile, method",
    [
        (EndpointProfile.IDENTITY, "POST"),
        (EndpointProfile.GROUP_MEMBER, "post"),
        (EndpointProfile.GROUP_DATA, "GET"),
        (EndpointProfile.PROOF_GENERATION, "POST"),
        (EndpointProfile.GROUP_RESET, "POST"),
    ],
)
def test_allowed(profile, method):
    authorize(profile, method, PRINCIPAL)


def test_public_profile_without_principal():
    authorize(EndpointProfile.PROOF_VERIFICATION, "POST", None)


@pytest.mark.parametrize("profile", list(EndpointProfile))
def test_options_preflight_always_passes(profile):
    authorize(profile, "OPTIONS", None)


@pytest.mark.parametrize(
    "profile, method",
    [
        (EndpointProfile.IDENTITY, "GET"),
        (EndpointProfile.GROUP_DATA, "POST"),
        (EndpointProfile.GROUP_RESET, "DELETE"),
        (EndpointProfile.IDENTITY, ""),
        (EndpointProfile.IDENTITY, None),
    ],
)
def test_method_not_allowed(profile, method):
    with pytest.raises(MethodNotAllowedError):
        authorize(profile, method, PRINCIPAL)


def test_method_checked_before_auth():
    with pytest.raises(MethodNotAllowedError):
        authorize(EndpointProfile.IDENTITY, "GET", None)


@pytest.mark.parametrize(
    "profile",
    [p for p in EndpointProfile if p is not EndpointProfile.PROOF_VERIFICATION],
)
def test_requires_principal(profile):
    method = next(iter(profile.policy.allowed_methods))
    with pytest.raises(AuthorizationError):
        authorize(profile, method, None)


def test_rejects_unknown_profile():
    with pytest.raises(TypeError):
        authorize("IDENTITY", "POST", PRINCIPAL)
