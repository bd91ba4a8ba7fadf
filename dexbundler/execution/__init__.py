"""Bundle execution: the on-chain executor and an in-memory reference bundler."""

from dexbundler.execution.bundler import decode_execute_bundle, encode_execute_bundle
from dexbundler.execution.executor import AccountSigner, BundleExecutor, TransactionSigner
from dexbundler.execution.local import ConstantProductPool, Ledger, LocalBundler, LocalRevert
from dexbundler.execution.revert import classify_revert, decode_revert

__all__ = [
    "BundleExecutor",
    "TransactionSigner",
    "AccountSigner",
    "LocalBundler",
    "Ledger",
    "ConstantProductPool",
    "LocalRevert",
    "encode_execute_bundle",
    "decode_execute_bundle",
    "classify_revert",
    "decode_revert",
]
