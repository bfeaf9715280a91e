"""
Request-time workflow tying identity derivation to group membership.

The authentication layer hands over a Principal; the service derives its
identity, optionally registers the commitment and reports the group root.
Only commitments leave this module through EnrollmentResult. The private
scalar is available solely via ``material_for_proof`` for an in-process
prover.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .config import AUDIT_FILE_NAME, DEFAULT_ALGORITHM
from .derivation import IdentityDeriver
from .exceptions import StorageError, ValidationError
from .profiles import EndpointProfile, authorize
from .secure_fields import seal_fields
from .settings import Settings
from .store import MembershipStore
from .types import IdentityMaterial

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """
    Authenticated caller as reported by the identity provider.

    Attributes:
        subject_id: Stable provider subject (OIDC ``sub``)
        aux_identifier: Verified email, if any
    """

    subject_id: str
    aux_identifier: Optional[str] = None

    def __repr__(self) -> str:
        return "Principal(<redacted>)"

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "Principal":
        """
        Build a principal from OIDC ID-token claims.

        The email is used only when ``email_verified`` is true.

        Raises:
            ValidationError: If ``sub`` is missing
        """
        subject = claims.get("sub")
        if not subject or not str(subject).strip():
            raise ValidationError("Claims do not contain a subject ('sub')")
        email = claims.get("email") if claims.get("email_verified") is True else None
        return cls(subject_id=str(subject).strip(), aux_identifier=email)


@dataclass(frozen=True)
class EnrollmentResult:
    commitment: str
    registered: bool
    is_member: bool
    root: str
    group_id: int
    tree_depth: int
    member_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitment": self.commitment,
            "registered": self.registered,
            "isMember": self.is_member,
            "root": self.root,
            "groupId": self.group_id,
            "treeDepth": self.tree_depth,
            "memberCount": self.member_count,
        }


class IdentityAuditLog:
    """
    Append-only JSON-lines log of enrolments.

    Principal attributes are sealed per field; the commitment, outcome and
    timestamp stay readable for operators.
    """

    SEALED_FIELDS = ("subjectId", "auxIdentifier")

    def __init__(
        self,
        path: Union[str, Path],
        key: bytes,
        algorithm: str = DEFAULT_ALGORITHM,
    ):
        self.path = Path(path)
        self._key = key
        self.algorithm = algorithm
        self._lock = threading.Lock()

    def record(self, principal: Principal, commitment: str, registered: bool) -> None:
        entry = {
            "subjectId": principal.subject_id,
            "auxIdentifier": principal.aux_identifier,
            "commitment": commitment,
            "registered": registered,
            "recordedAt": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        line = json.dumps(
            seal_fields(entry, self.SEALED_FIELDS, self._key, self.algorithm),
            sort_keys=True,
        )
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
                    fh.flush()
                    os.fsync(fh.fileno())
            except OSError as exc:
                raise StorageError(f"Cannot append to {self.path.name}", self.path) from exc


class IdentityService:
    """
    Identity and membership operations for authenticated principals.

    Args:
        deriver: Identity deriver
        store: Membership store
        audit_log: Optional enrolment audit log
    """

    def __init__(
        self,
        deriver: IdentityDeriver,
        store: MembershipStore,
        audit_log: Optional[IdentityAuditLog] = None,
    ):
        self.deriver = deriver
        self.store = store
        self.audit_log = audit_log

    def _material(self, principal: Principal) -> IdentityMaterial:
        return self.deriver.derive(principal.subject_id, principal.aux_identifier)

    def enroll(
        self,
        principal: Optional[Principal],
        register: bool = True,
        method: str = "POST",
    ) -> EnrollmentResult:
        """
        Derive the principal's identity and optionally add it to the group.

        Registering an existing member is not an error: ``registered`` is
        False and the group is untouched. An audit log that cannot be written
        is logged as an error and does not fail the enrolment.
        """
        authorize(EndpointProfile.IDENTITY, method, principal)
        if register:
            authorize(EndpointProfile.GROUP_MEMBER, method, principal)

        material = self._material(principal)
        registered = self.store.add_member(material.commitment) if register else False
        state = self.store.get_state()

        if self.audit_log is not None and register:
            try:
                self.audit_log.record(principal, material.commitment, registered)
            except StorageError as exc:
                # The membership change is already committed.
                logger.error("Audit record for %s not written: %s", material.commitment, exc)

        logger.info(
            "Enrolment for commitment %s (registered=%s, members=%d)",
            material.commitment,
            registered,
            len(state.members),
        )
        return EnrollmentResult(
            commitment=material.commitment,
            registered=registered,
            is_member=material.commitment in state.members,
            root=state.root,
            group_id=state.group_id,
            tree_depth=state.tree_depth,
            member_count=len(state.members),
        )

    def retrieve(self, principal: Optional[Principal], method: str = "POST") -> str:
        """Commitment for the principal; nothing secret."""
        authorize(EndpointProfile.IDENTITY, method, principal)
        return self._material(principal).commitment

    def verify(
        self,
        principal: Optional[Principal],
        expected_commitment: str,
        method: str = "POST",
    ) -> bool:
        authorize(EndpointProfile.IDENTITY, method, principal)
        return self.deriver.verify(
            principal.subject_id, principal.aux_identifier, expected_commitment
        )

    def material_for_proof(
        self, principal: Optional[Principal], method: str = "POST"
    ) -> IdentityMaterial:
        """
        Full identity material for an in-process prover.

        Never serialise the result to a remote caller; use its ``to_dict``
        which carries the commitment only.
        """
        authorize(EndpointProfile.PROOF_GENERATION, method, principal)
        return self._material(principal)

    def group_snapshot(
        self, principal: Optional[Principal], method: str = "GET"
    ) -> Dict[str, Any]:
        """Public group state plus root."""
        authorize(EndpointProfile.GROUP_DATA, method, principal)
        state = self.store.get_state()
        snapshot = state.to_public_dict()
        snapshot["root"] = state.root
        snapshot["memberCount"] = len(state.members)
        return snapshot

    def reset_group(
        self,
        principal: Optional[Principal],
        complete: bool = False,
        method: str = "POST",
    ) -> None:
        authorize(EndpointProfile.GROUP_RESET, method, principal)
        if complete:
            self.store.complete_reset()
        else:
            self.store.reset()


def build_service(settings: Settings, audit: bool = True) -> IdentityService:
    """Wire deriver, store and audit log from settings."""
    deriver = IdentityDeriver(
        settings.app_secret,
        issuer=settings.issuer,
        client_id=settings.client_id,
        strategy=settings.strategy,
        context_label=settings.context_label,
    )
    store = MembershipStore(
        settings.data_dir,
        settings.encryption_key,
        group_id=settings.group_id,
        tree_depth=settings.tree_depth,
        cache_ttl=settings.cache_ttl,
        algorithm=settings.algorithm,
    )
    audit_log = None
    if audit:
        audit_log = IdentityAuditLog(
            settings.data_dir / AUDIT_FILE_NAME,
            settings.encryption_key,
            settings.algorithm,
        )
    return IdentityService(deriver, store, audit_log)
