"""
Signer abstraction for the transaction pipeline.

A signer is exactly one of two shapes:
- partial: produces signatures for a transaction without submitting it
  (TransactionPartialSigner, and its TransactionModifyingSigner refinement
  that returns a whole re-signed transaction)
- sending: signs and submits atomically, returning the network signature
  (TransactionSendingSigner)

Wallet sessions are classified once, at the wallet boundary, by
create_wallet_transaction_signer. Everything downstream matches on the
signer class and never inspects the session again.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from solders.keypair import Keypair
from solders.message import to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .exceptions import (
    MissingSignatureError,
    TransactionSignError,
    WalletCapabilityError,
    raise_if_aborted,
)
from .message import (
    TransactionMessage,
    VersionedMessage,
    create_unsigned_transaction,
    required_signer_addresses,
)
from .validators import decode_signature

logger = logging.getLogger(__name__)


class SignerMode(str, Enum):
    PARTIAL = "partial"
    SEND = "send"


SignatureDictionary = Dict[Pubkey, Signature]


class TransactionSigner(ABC):
    mode: SignerMode = SignerMode.PARTIAL
    address: Pubkey

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(address={self.address})"


class TransactionPartialSigner(TransactionSigner):
    mode = SignerMode.PARTIAL

    @abstractmethod
    async def sign_transactions(
        self,
        transactions: Sequence[VersionedTransaction],
    ) -> List[SignatureDictionary]:
        """Return one ``{address: signature}`` dictionary per transaction."""


class TransactionModifyingSigner(TransactionPartialSigner):
    """Partial signer that hands back whole signed transactions."""

    @abstractmethod
    async def modify_and_sign_transactions(
        self,
        transactions: Sequence[VersionedTransaction],
    ) -> List[VersionedTransaction]:
        ...

    async def sign_transactions(
        self,
        transactions: Sequence[VersionedTransaction],
    ) -> List[SignatureDictionary]:
        signed = await self.modify_and_sign_transactions(transactions)
        return [extract_signatures(tx, [self.address]) for tx in signed]


class TransactionSendingSigner(TransactionSigner):
    mode = SignerMode.SEND

    @abstractmethod
    async def sign_and_send_transactions(
        self,
        transactions: Sequence[VersionedTransaction],
    ) -> List[bytes]:
        """Submit each transaction and return its raw 64-byte signature."""


class KeypairSigner(TransactionPartialSigner):
    """Partial signer backed by an in-memory keypair."""

    def __init__(self, keypair: Keypair):
        self.keypair = keypair
        self.address = keypair.pubkey()

    async def sign_transactions(
        self,
        transactions: Sequence[VersionedTransaction],
    ) -> List[SignatureDictionary]:
        return [
            {self.address: self.keypair.sign_message(to_bytes_versioned(tx.message))}
            for tx in transactions
        ]


# =============================================================================
# Signature bookkeeping
# =============================================================================

def _signer_slots(transaction: VersionedTransaction) -> List[Pubkey]:
    return required_signer_addresses(transaction.message)


def extract_signatures(
    transaction: VersionedTransaction,
    addresses: Optional[Sequence[Pubkey]] = None,
) -> SignatureDictionary:
    """Populated signatures of a transaction keyed by signer address."""
    wanted = set(addresses) if addresses is not None else None
    empty = Signature.default()
    result: SignatureDictionary = {}
    for address, signature in zip(_signer_slots(transaction), transaction.signatures):
        if signature == empty:
            continue
        if wanted is not None and address not in wanted:
            continue
        result[address] = signature
    return result


def merge_signatures(
    transaction: VersionedTransaction,
    signatures: SignatureDictionary,
) -> VersionedTransaction:
    """Return a new transaction with ``signatures`` written into their slots."""
    merged = list(transaction.signatures)
    for index, address in enumerate(_signer_slots(transaction)):
        if address in signatures:
            merged[index] = signatures[address]
    return VersionedTransaction.populate(transaction.message, merged)


def missing_signers(transaction: VersionedTransaction) -> List[Pubkey]:
    empty = Signature.default()
    return [
        address
        for address, signature in zip(_signer_slots(transaction), transaction.signatures)
        if signature == empty
    ]


# =============================================================================
# Wallet adapters
# =============================================================================

@dataclass
class WalletSession:
    """
    Connected wallet as seen by the pipeline.

    Attributes:
        address: Wallet account address
        sign_transaction: Coroutine returning the transaction signed by the wallet
        send_transaction: Coroutine that signs, submits and returns a base58 signature
    """
    address: Pubkey
    sign_transaction: Optional[Callable[[VersionedTransaction], Awaitable[VersionedTransaction]]] = None
    send_transaction: Optional[Callable[..., Awaitable[str]]] = None


class WalletPartialSigner(TransactionModifyingSigner):

    def __init__(self, session: WalletSession):
        self._session = session
        self.address = session.address

    async def modify_and_sign_transactions(
        self,
        transactions: Sequence[VersionedTransaction],
    ) -> List[VersionedTransaction]:
        results = []
        for transaction in transactions:
            signed = await self._session.sign_transaction(transaction)
            produced = extract_signatures(signed)
            if self.address not in produced:
                raise MissingSignatureError(
                    "Wallet did not populate the expected fee payer signature.",
                    signer_address=str(self.address),
                )
            results.append(merge_signatures(transaction, produced))
        return results


class WalletSendingSigner(TransactionSendingSigner):

    def __init__(self, session: WalletSession, commitment: Optional[str] = None):
        self._session = session
        self._commitment = commitment
        self.address = session.address

    async def sign_and_send_transactions(
        self,
        transactions: Sequence[VersionedTransaction],
    ) -> List[bytes]:
        signatures = []
        for transaction in transactions:
            if self._commitment is not None:
                signature = await self._session.send_transaction(transaction, commitment=self._commitment)
            else:
                signature = await self._session.send_transaction(transaction)
            signatures.append(decode_signature(signature))
        return signatures


@dataclass(frozen=True)
class WalletTransactionSigner:
    mode: SignerMode
    signer: TransactionSigner


def create_wallet_transaction_signer(
    session: WalletSession,
    commitment: Optional[str] = None,
) -> WalletTransactionSigner:
    if session.sign_transaction is not None:
        return WalletTransactionSigner(mode=SignerMode.PARTIAL, signer=WalletPartialSigner(session))
    if session.send_transaction is not None:
        return WalletTransactionSigner(
            mode=SignerMode.SEND,
            signer=WalletSendingSigner(session, commitment),
        )
    raise WalletCapabilityError(
        "Wallet session does not support signing or sending transactions.",
        signer_address=str(session.address),
    )


def resolve_signer_mode(signer: Any) -> SignerMode:
    if isinstance(signer, TransactionSendingSigner):
        return SignerMode.SEND
    return SignerMode.PARTIAL


Authority = Union[WalletSession, TransactionSigner, Keypair]


def resolve_authority(
    authority: Authority,
    commitment: Optional[str] = None,
) -> WalletTransactionSigner:
    if isinstance(authority, WalletSession):
        return create_wallet_transaction_signer(authority, commitment)
    if isinstance(authority, Keypair):
        authority = KeypairSigner(authority)
    return WalletTransactionSigner(mode=resolve_signer_mode(authority), signer=authority)


# =============================================================================
# Signing routines
# =============================================================================

async def _sign_compiled(
    compiled: VersionedMessage,
    signers: Sequence[TransactionSigner],
    abort_signal: Optional[asyncio.Event],
) -> VersionedTransaction:
    transaction = create_unsigned_transaction(compiled)
    required = set(required_signer_addresses(compiled))
    relevant = [signer for signer in signers if signer.address in required]

    for signer in relevant:
        if isinstance(signer, TransactionModifyingSigner):
            raise_if_aborted(abort_signal, "sign")
            [transaction] = await signer.modify_and_sign_transactions([transaction])

    partial = [
        signer for signer in relevant
        if isinstance(signer, TransactionPartialSigner) and not isinstance(signer, TransactionModifyingSigner)
    ]
    if partial:
        raise_if_aborted(abort_signal, "sign")
        results = await asyncio.gather(*(signer.sign_transactions([transaction]) for signer in partial))
        collected: SignatureDictionary = {}
        for [signatures] in results:
            collected.update(signatures)
        transaction = merge_signatures(transaction, collected)

    raise_if_aborted(abort_signal, "sign")
    return transaction


async def partially_sign_transaction_message_with_signers(
    message: TransactionMessage,
    abort_signal: Optional[asyncio.Event] = None,
) -> VersionedTransaction:
    signers = [s for s in message.get_signers() if not isinstance(s, TransactionSendingSigner)]
    return await _sign_compiled(message.compile(), signers, abort_signal)


async def sign_transaction_message_with_signers(
    message: TransactionMessage,
    abort_signal: Optional[asyncio.Event] = None,
) -> VersionedTransaction:
    """Sign with every attached signer and require a complete set of signatures."""
    transaction = await partially_sign_transaction_message_with_signers(message, abort_signal)
    missing = [str(address) for address in missing_signers(transaction)]
    if missing:
        raise TransactionSignError(
            f"Transaction is missing signatures for: {', '.join(missing)}",
            missing_signers=missing,
        )
    logger.debug(f"Signed transaction {transaction.signatures[0]}")
    return transaction


async def sign_and_send_transaction_message_with_signers(
    message: TransactionMessage,
    abort_signal: Optional[asyncio.Event] = None,
) -> bytes:
    signers = message.get_signers()
    sending = [s for s in signers if isinstance(s, TransactionSendingSigner)]
    if not sending:
        raise TransactionSignError("No sending signer is attached to the transaction message.")

    sender = sending[0]
    transaction = await partially_sign_transaction_message_with_signers(message, abort_signal)
    raise_if_aborted(abort_signal, "send")
    [signature] = await sender.sign_and_send_transactions([transaction])
    logger.info(f"Transaction submitted by sending signer {sender.address}")
    return signature


__all__ = [
    "SignerMode",
    "TransactionSigner",
    "TransactionPartialSigner",
    "TransactionModifyingSigner",
    "TransactionSendingSigner",
    "KeypairSigner",
    "WalletSession",
    "WalletPartialSigner",
    "WalletSendingSigner",
    "WalletTransactionSigner",
    "Authority",
    "create_wallet_transaction_signer",
    "resolve_signer_mode",
    "resolve_authority",
    "extract_signatures",
    "merge_signatures",
    "missing_signers",
    "partially_sign_transaction_message_with_signers",
    "sign_transaction_message_with_signers",
    "sign_and_send_transaction_message_with_signers",
]
