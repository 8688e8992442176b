"""Credential broker: issues secret material and tracks who consumes it.

Credentials are keyed by ``(owner, key)``. Issuing is idempotent so that a
re-run never rotates a password the database was initialised with.
"""

from __future__ import annotations

import hashlib
import secrets
from collections.abc import Iterable
from dataclasses import replace

from stackdeploy.errors import CredentialNotFound
from stackdeploy.models.resources import Credential, ResourceRef
from stackdeploy.observability.logging import get_logger

_log = get_logger("credentials")

_TOKEN_BYTES = 24


class CredentialBroker:
    """In-process store of credentials for one stack.

    The value of a credential never changes once issued; ``publish`` only
    extends its consumer set.
    """

    def __init__(self, token_bytes: int = _TOKEN_BYTES) -> None:
        self._token_bytes = token_bytes
        self._credentials: dict[tuple[str, str], Credential] = {}

    def issue(self, owner: str, key: str, value: str | None = None) -> Credential:
        """Return the credential for ``(owner, key)``, creating it on first call.

        A caller-supplied *value* is used only when the credential does not
        exist yet; otherwise the existing credential is returned unchanged.
        """
        existing = self._credentials.get((owner, key))
        if existing is not None:
            if value is not None and value != existing.value:
                _log.debug("credential_value_ignored", owner=owner, key=key)
            return existing

        generated = value is None
        credential = Credential(
            owner=owner,
            key=key,
            value=secrets.token_urlsafe(self._token_bytes) if value is None else value,
        )
        self._credentials[(owner, key)] = credential
        _log.info("credential_issued", owner=owner, key=key, generated=generated)
        return credential

    def restore(self, owner: str, key: str, value: str) -> Credential:
        """Seed a credential read back from the cluster, taking precedence over issue()."""
        existing = self._credentials.get((owner, key))
        if existing is not None:
            return existing
        credential = Credential(owner=owner, key=key, value=value)
        self._credentials[(owner, key)] = credential
        _log.info("credential_restored", owner=owner, key=key)
        return credential

    def get(self, owner: str, key: str) -> Credential:
        try:
            return self._credentials[(owner, key)]
        except KeyError:
            raise CredentialNotFound(owner, key) from None

    def has(self, owner: str, key: str) -> bool:
        return (owner, key) in self._credentials

    def publish(self, credential: Credential, consumer: ResourceRef) -> Credential:
        """Make *credential* available to *consumer* and return the updated record."""
        current = self.get(credential.owner, credential.key)
        if consumer in current.consumers:
            return current
        updated = replace(current, consumers=current.consumers | {consumer})
        self._credentials[(credential.owner, credential.key)] = updated
        _log.info(
            "credential_published",
            owner=credential.owner,
            key=credential.key,
            consumer=str(consumer),
        )
        return updated

    def fingerprint(self, pairs: Iterable[tuple[str, str]]) -> str:
        """Digest of the values behind *pairs*, stable across processes."""
        digest = hashlib.sha256()
        for owner, key in sorted(pairs):
            digest.update(f"{owner}/{key}=".encode())
            digest.update(self.get(owner, key).value.encode())
            digest.update(b"\0")
        return digest.hexdigest()

    def revoke_all(self) -> None:
        """Forget every credential. Called when the stack is torn down."""
        count = len(self._credentials)
        self._credentials.clear()
        if count:
            _log.info("credentials_revoked", count=count)
