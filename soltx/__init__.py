"""
soltx

Solana transaction preparation, compute tuning, signing and submission.
"""

__version__ = "0.1.0"

from .amounts import (
    LAMPORTS_PER_SOL,
    Ratio,
    RoundingMode,
    TokenAmountMath,
    create_ratio,
    create_token_amount,
    lamports_from_sol,
    lamports_math,
)
from .client import SolanaClient, create_client
from .config import Settings, get_settings
from .message import BlockhashLifetime, LookupTableInstruction, TransactionMessage
from .pool import LatestBlockhashCache, TransactionPoolController
from .prepare import PrepareTransactionOverrides, prepare_transaction
from .rpc import SolanaRpc
from .signers import (
    KeypairSigner,
    SignerMode,
    WalletSession,
    create_wallet_transaction_signer,
)
from .sol_transfer import SolTransferHelper, SolTransferPrepareConfig
from .spl_token import SplTokenHelper, SplTokenHelperConfig, SplTransferPrepareConfig
from .transaction import (
    PreparedTransaction,
    TransactionHelper,
    TransactionPrepareAndSendRequest,
    TransactionPrepareRequest,
)

__all__ = [
    "LAMPORTS_PER_SOL",
    "Ratio",
    "RoundingMode",
    "TokenAmountMath",
    "create_ratio",
    "create_token_amount",
    "lamports_from_sol",
    "lamports_math",
    "SolanaClient",
    "create_client",
    "Settings",
    "get_settings",
    "BlockhashLifetime",
    "LookupTableInstruction",
    "TransactionMessage",
    "LatestBlockhashCache",
    "TransactionPoolController",
    "PrepareTransactionOverrides",
    "prepare_transaction",
    "SolanaRpc",
    "KeypairSigner",
    "SignerMode",
    "WalletSession",
    "create_wallet_transaction_signer",
    "SolTransferHelper",
    "SolTransferPrepareConfig",
    "SplTokenHelper",
    "SplTokenHelperConfig",
    "SplTransferPrepareConfig",
    "PreparedTransaction",
    "TransactionHelper",
    "TransactionPrepareAndSendRequest",
    "TransactionPrepareRequest",
]
