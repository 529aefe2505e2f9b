"""Ephemeral supply-key authority for a single tokenization attempt.

A fresh Ed25519 keypair is generated per attempt. Its public key becomes
the collection's supply key, and its private half co-signs exactly one
mint transaction before being discarded. It is a capability held by the
orchestrator, not a credential: it cannot be pickled, copied, or printed.
"""
from __future__ import annotations

import hashlib
from typing import Any, Optional

from nacl import encoding, signing

from .exceptions import AuthorityReuseError, SigningError
from .transactions import MintTransaction, TransactionSignature, SignerRole


class SigningAuthority:
    """Single-use Ed25519 signing capability."""

    __slots__ = ("_signing_key", "_verify_key", "_used_for")

    def __init__(self, signing_key: signing.SigningKey):
        self._signing_key: Optional[signing.SigningKey] = signing_key
        self._verify_key = signing_key.verify_key
        self._used_for: Optional[str] = None

    @classmethod
    def generate(cls) -> "SigningAuthority":
        return cls(signing.SigningKey.generate())

    @property
    def public_key(self) -> bytes:
        return self._verify_key.encode()

    @property
    def public_key_hex(self) -> str:
        return self._verify_key.encode(encoder=encoding.HexEncoder).decode()

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(self.public_key).hexdigest()[:16]

    @property
    def is_spent(self) -> bool:
        return self._used_for is not None

    @property
    def is_discarded(self) -> bool:
        return self._signing_key is None

    def sign(self, tx: MintTransaction) -> TransactionSignature:
        """Sign the frozen transaction body. Synchronous and local."""
        if self._signing_key is None:
            raise SigningError(
                "Signing authority was discarded",
                details={"stage": "authority_signature", "fingerprint": self.fingerprint},
            )
        if self._used_for is not None:
            raise AuthorityReuseError(
                f"Signing authority already signed transaction {self._used_for}",
                details={"fingerprint": self.fingerprint, "previous_tx_id": self._used_for},
            )
        signed = self._signing_key.sign(tx.body_bytes())
        self._used_for = tx.transaction_id
        return TransactionSignature(
            role=SignerRole.AUTHORITY,
            public_key=self.public_key,
            signature=signed.signature,
        )

    def discard(self) -> None:
        """Drop the private key; the public key stays for auditing."""
        self._signing_key = None

    def __repr__(self) -> str:
        state = "discarded" if self.is_discarded else ("spent" if self.is_spent else "fresh")
        return f"SigningAuthority(fingerprint={self.fingerprint}, {state})"

    __str__ = __repr__

    def __reduce__(self) -> Any:
        raise TypeError("SigningAuthority cannot be serialized")

    def __copy__(self) -> Any:
        raise TypeError("SigningAuthority cannot be copied")

    def __deepcopy__(self, memo: Any) -> Any:
        raise TypeError("SigningAuthority cannot be copied")


__all__ = ["SigningAuthority"]
