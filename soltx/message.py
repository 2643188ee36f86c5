"""
Unsigned transaction message value type.

TransactionMessage is immutable: every ``with_*`` / ``append_*`` method returns
a new message and leaves the receiver untouched, so a message held by a
PreparedTransaction can be shared between sign, to_wire and send safely.
"""

import base64
import struct
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import Message, MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .exceptions import TransactionBuildError
from .validators import assert_in_range

COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")

SET_COMPUTE_UNIT_LIMIT_DISCRIMINATOR = 0x02
SET_COMPUTE_UNIT_PRICE_DISCRIMINATOR = 0x03

MAX_COMPUTE_UNIT_LIMIT_VALUE = 2**32 - 1
MAX_COMPUTE_UNIT_PRICE = 2**64 - 1

LEGACY = "legacy"

TransactionVersion = Union[str, int]
VersionedMessage = Union[Message, MessageV0]


@dataclass(frozen=True)
class BlockhashLifetime:
    blockhash: Hash
    last_valid_block_height: int


@dataclass(frozen=True)
class LookupTableInstruction:
    """An instruction whose accounts should be resolved through lookup tables."""
    instruction: Instruction
    address_lookup_tables: Tuple[AddressLookupTableAccount, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "address_lookup_tables", tuple(self.address_lookup_tables))


TransactionInstructionInput = Union[Instruction, LookupTableInstruction]


def unwrap_instruction(instruction: TransactionInstructionInput) -> Instruction:
    if isinstance(instruction, LookupTableInstruction):
        return instruction.instruction
    return instruction


def instruction_uses_address_lookup(instruction: TransactionInstructionInput) -> bool:
    return isinstance(instruction, LookupTableInstruction) and len(instruction.address_lookup_tables) > 0


# =============================================================================
# Compute budget instructions
# =============================================================================

def create_set_compute_unit_limit_instruction(units: int) -> Instruction:
    assert_in_range(units, 0, MAX_COMPUTE_UNIT_LIMIT_VALUE, "compute_unit_limit")
    data = bytes([SET_COMPUTE_UNIT_LIMIT_DISCRIMINATOR]) + struct.pack("<I", units)
    return Instruction(
        program_id=COMPUTE_BUDGET_PROGRAM_ID,
        accounts=[],
        data=data
    )


def create_set_compute_unit_price_instruction(micro_lamports: int) -> Instruction:
    assert_in_range(micro_lamports, 0, MAX_COMPUTE_UNIT_PRICE, "compute_unit_price")
    data = bytes([SET_COMPUTE_UNIT_PRICE_DISCRIMINATOR]) + struct.pack("<Q", micro_lamports)
    return Instruction(
        program_id=COMPUTE_BUDGET_PROGRAM_ID,
        accounts=[],
        data=data
    )


def _is_compute_budget_instruction(instruction: TransactionInstructionInput, discriminator: int) -> bool:
    ix = unwrap_instruction(instruction)
    data = bytes(ix.data)
    return ix.program_id == COMPUTE_BUDGET_PROGRAM_ID and len(data) > 0 and data[0] == discriminator


def is_compute_unit_limit_instruction(instruction: TransactionInstructionInput) -> bool:
    return _is_compute_budget_instruction(instruction, SET_COMPUTE_UNIT_LIMIT_DISCRIMINATOR)


def is_compute_unit_price_instruction(instruction: TransactionInstructionInput) -> bool:
    return _is_compute_budget_instruction(instruction, SET_COMPUTE_UNIT_PRICE_DISCRIMINATOR)


def read_compute_unit_limit(instruction: TransactionInstructionInput) -> int:
    data = bytes(unwrap_instruction(instruction).data)
    return struct.unpack_from("<I", data, 1)[0]


# =============================================================================
# Transaction message
# =============================================================================

@dataclass(frozen=True)
class TransactionMessage:
    version: TransactionVersion = LEGACY
    fee_payer: Optional[Pubkey] = None
    fee_payer_signer: Optional[Any] = None
    instructions: Tuple[TransactionInstructionInput, ...] = ()
    lifetime: Optional[BlockhashLifetime] = None
    signers: Tuple[Any, ...] = field(default=())

    def __post_init__(self) -> None:
        if self.version != LEGACY and self.version != 0:
            raise TransactionBuildError(
                f"Unsupported transaction version {self.version!r}; expected 'legacy' or 0"
            )
        object.__setattr__(self, "instructions", tuple(self.instructions))
        object.__setattr__(self, "signers", tuple(self.signers))

    @classmethod
    def create(cls, version: TransactionVersion = LEGACY) -> "TransactionMessage":
        return cls(version=version)

    def with_fee_payer(self, address: Pubkey) -> "TransactionMessage":
        return replace(self, fee_payer=address, fee_payer_signer=None)

    def with_fee_payer_signer(self, signer: Any) -> "TransactionMessage":
        return replace(self, fee_payer=signer.address, fee_payer_signer=signer)

    def append_instruction(self, instruction: TransactionInstructionInput) -> "TransactionMessage":
        return replace(self, instructions=self.instructions + (instruction,))

    def append_instructions(self, instructions: Iterable[TransactionInstructionInput]) -> "TransactionMessage":
        return replace(self, instructions=self.instructions + tuple(instructions))

    def with_instructions(self, instructions: Iterable[TransactionInstructionInput]) -> "TransactionMessage":
        return replace(self, instructions=tuple(instructions))

    def with_lifetime(self, lifetime: BlockhashLifetime) -> "TransactionMessage":
        return replace(self, lifetime=lifetime)

    def with_signers(self, signers: Iterable[Any]) -> "TransactionMessage":
        return replace(self, signers=self.signers + tuple(signers))

    @property
    def has_lifetime(self) -> bool:
        return self.lifetime is not None

    @property
    def raw_instructions(self) -> List[Instruction]:
        return [unwrap_instruction(ix) for ix in self.instructions]

    @property
    def address_lookup_tables(self) -> List[AddressLookupTableAccount]:
        tables: List[AddressLookupTableAccount] = []
        seen = set()
        for ix in self.instructions:
            if not isinstance(ix, LookupTableInstruction):
                continue
            for table in ix.address_lookup_tables:
                if table.key in seen:
                    continue
                seen.add(table.key)
                tables.append(table)
        return tables

    def get_signers(self) -> List[Any]:
        """Distinct signers attached to the message, fee payer first."""
        result = []
        seen = set()
        candidates = ([self.fee_payer_signer] if self.fee_payer_signer is not None else []) + list(self.signers)
        for signer in candidates:
            if signer.address in seen:
                continue
            seen.add(signer.address)
            result.append(signer)
        return result

    def compile(self) -> VersionedMessage:
        if self.fee_payer is None:
            raise TransactionBuildError("Transaction message has no fee payer.")
        if self.lifetime is None:
            raise TransactionBuildError("Transaction message has no lifetime; set a blockhash first.")

        instructions = self.raw_instructions
        try:
            if self.version == LEGACY:
                return Message.new_with_blockhash(instructions, self.fee_payer, self.lifetime.blockhash)
            return MessageV0.try_compile(
                self.fee_payer,
                instructions,
                self.address_lookup_tables,
                self.lifetime.blockhash,
            )
        except Exception as e:
            raise TransactionBuildError(f"Failed to compile transaction message: {e}") from e


def required_signer_addresses(compiled: VersionedMessage) -> List[Pubkey]:
    return list(compiled.account_keys[:compiled.header.num_required_signatures])


def create_unsigned_transaction(compiled: VersionedMessage) -> VersionedTransaction:
    placeholders = [Signature.default()] * compiled.header.num_required_signatures
    return VersionedTransaction.populate(compiled, placeholders)


def transaction_to_base64(transaction: Union[TransactionMessage, VersionedTransaction]) -> str:
    """Base64 wire encoding of a signed transaction, or of a message with empty signature slots."""
    if isinstance(transaction, TransactionMessage):
        transaction = create_unsigned_transaction(transaction.compile())
    return base64.b64encode(bytes(transaction)).decode()


# =============================================================================
# Reference keys
# =============================================================================

def _first_non_memo_index(instructions: Sequence[TransactionInstructionInput]) -> int:
    for index, ix in enumerate(instructions):
        if unwrap_instruction(ix).program_id != MEMO_PROGRAM_ID:
            return index
    raise TransactionBuildError("At least one non-memo instruction is required.")


def insert_reference_keys(references: Sequence[Pubkey], message: TransactionMessage) -> TransactionMessage:
    """Append read-only reference accounts to the first non-memo instruction."""
    index = _first_non_memo_index(message.instructions)
    target = message.instructions[index]
    ix = unwrap_instruction(target)
    accounts = list(ix.accounts) + [
        AccountMeta(pubkey=reference, is_signer=False, is_writable=False)
        for reference in references
    ]
    updated: TransactionInstructionInput = Instruction(ix.program_id, bytes(ix.data), accounts)
    if isinstance(target, LookupTableInstruction):
        updated = replace(target, instruction=updated)
    instructions = list(message.instructions)
    instructions[index] = updated
    return message.with_instructions(instructions)


def insert_reference_key(reference: Pubkey, message: TransactionMessage) -> TransactionMessage:
    return insert_reference_keys([reference], message)
