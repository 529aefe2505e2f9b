"""Custodian signer port and the bounded signature request.

The custodian signs through an external, often human-mediated wallet.
`request_custodian_signature` runs that request as its own task and races
it against a hard deadline and the attempt's cancel event.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from nacl import signing

from .exceptions import AttemptCancelled, SigningRejected, SigningTimeout
from .transactions import MintTransaction, SignerRole, TransactionSignature

logger = logging.getLogger(__name__)


class CustodianSigner(ABC):
    """Abstract interface for the custodian's external wallet."""

    account_id: str = ""

    @property
    def public_key(self) -> Optional[bytes]:
        """Custodian public key, when the wallet exposes one."""
        return None

    @abstractmethod
    async def sign_transaction(self, tx: MintTransaction) -> TransactionSignature:
        """Return the custodian's signature over `tx.body_bytes()`.

        Raises SigningRejected when the custodian declines.
        """


class LocalKeyCustodianSigner(CustodianSigner):
    """Custodian signer backed by an in-process Ed25519 key.

    For development and sandbox use. `approve` stands in for the wallet's
    confirmation prompt.
    """

    def __init__(
        self,
        account_id: str,
        signing_key: Optional[signing.SigningKey] = None,
        approve: Optional[Callable[[MintTransaction], Awaitable[bool]]] = None,
    ):
        self.account_id = account_id
        self._signing_key = signing_key or signing.SigningKey.generate()
        self._approve = approve
        self.requests = 0

    @property
    def public_key(self) -> bytes:
        return self._signing_key.verify_key.encode()

    async def sign_transaction(self, tx: MintTransaction) -> TransactionSignature:
        self.requests += 1
        if self._approve is not None and not await self._approve(tx):
            raise SigningRejected(
                "Custodian declined to sign the mint transaction",
                details={"tx_id": tx.transaction_id, "signature": "custodian"},
            )
        signed = self._signing_key.sign(tx.body_bytes())
        return TransactionSignature(
            role=SignerRole.CUSTODIAN,
            public_key=self.public_key,
            signature=signed.signature,
        )

    def __repr__(self) -> str:
        return f"LocalKeyCustodianSigner(account_id={self.account_id!r})"


async def request_custodian_signature(
    signer: CustodianSigner,
    tx: MintTransaction,
    timeout: float,
    cancel_event: Optional[asyncio.Event] = None,
) -> TransactionSignature:
    """Obtain the custodian signature within `timeout` seconds.

    Raises:
        SigningTimeout: deadline passed first
        SigningRejected: custodian declined or the wallet failed
        AttemptCancelled: the attempt's cancel event fired first
    """
    sign_task = asyncio.ensure_future(signer.sign_transaction(tx))
    waiters = {sign_task}
    cancel_task: Optional[asyncio.Future] = None
    if cancel_event is not None:
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_task)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in waiters:
            if not task.done():
                task.cancel()

    if sign_task in done:
        try:
            signature = sign_task.result()
        except (SigningRejected, SigningTimeout):
            raise
        except asyncio.CancelledError:
            raise AttemptCancelled(
                "Custodian signature request was cancelled",
                details={"tx_id": tx.transaction_id},
            ) from None
        except Exception as e:
            raise SigningRejected(
                f"Custodian signer failed: {e}",
                details={"tx_id": tx.transaction_id, "signature": "custodian", "cause": type(e).__name__},
            ) from e
        if signature.role != SignerRole.CUSTODIAN:
            raise SigningRejected(
                "Custodian signer returned a signature with the wrong role",
                details={"tx_id": tx.transaction_id, "signature": "custodian"},
            )
        return signature

    if cancel_task is not None and cancel_task in done:
        raise AttemptCancelled(
            "Tokenization attempt cancelled while awaiting custodian signature",
            details={"tx_id": tx.transaction_id},
        )

    logger.warning(f"Custodian signature timed out after {timeout:g}s for {tx.transaction_id}")
    raise SigningTimeout(timeout, details={"tx_id": tx.transaction_id})


__all__ = [
    "CustodianSigner",
    "LocalKeyCustodianSigner",
    "request_custodian_signature",
]
