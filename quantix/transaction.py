"""
Signed operation envelope submitted to the runtime.

Amounts inside `data` are decimal strings and addresses are hex strings, so
the signing payload stays msgpack-encodable for any integer size.
"""
import time
from typing import Optional

import msgpack

from quantix.crypto import generate_hash, public_key_to_address, sign, verify_signature

REQUIRED_FIELDS = {
    'DEPOSIT_AND_MINT': ('symbol', 'deposit', 'mint'),
    'BURN_AND_WITHDRAW': ('symbol', 'burn', 'withdraw'),
    'LIQUIDATE': ('symbol', 'target'),
    'MIGRATE_VAULT': ('symbol',),
    'TRANSFER_QTX': ('to', 'amount'),
    'ADD_COLLATERAL_TYPE': ('symbol', 'asset', 'oracle', 'min_ratio', 'decimals',
                            'penalty', 'fee'),
    'UPDATE_COLLATERAL_TYPE': ('symbol', 'min_ratio', 'enabled', 'penalty', 'fee'),
    'DISABLE_COLLATERAL_TYPE': ('symbol',),
    'SET_CIRCUIT_BREAKER': ('max_single_withdrawal', 'max_single_mint',
                            'max_block_withdrawal', 'max_block_mint', 'max_price_drop'),
    'SET_RESERVE': ('reserve',),
    'SET_MIGRATION_CONTRACT': ('target', 'enabled'),
    'PAUSE': (),
    'UNPAUSE': (),
    'EMERGENCY_WITHDRAW': ('to', 'symbol'),
    'TRANSFER_OWNERSHIP': ('new_owner',),
}


class Transaction:
    def __init__(self,
                 sender_public_key: str,
                 tx_type: str,
                 data: dict,
                 nonce: int,
                 value: int = 0,
                 signature: Optional[bytes] = None,
                 timestamp: Optional[float] = None,
                 chain_id: Optional[int] = 1):
        self.sender_public_key = sender_public_key
        self.tx_type = tx_type
        self.data = data
        self.nonce = nonce
        self.value = value  # native funds sent with the call
        self.timestamp = timestamp or time.time()
        self.signature = signature
        self.chain_id = chain_id

    @classmethod
    def from_dict(cls, data: dict):
        """Creates a Transaction object from a dictionary."""
        signature = data.get("signature")
        if isinstance(signature, str):
            signature = bytes.fromhex(signature)
        return cls(
            sender_public_key=data["sender_public_key"],
            tx_type=data["tx_type"],
            data=data["data"],
            nonce=data["nonce"],
            value=int(data.get("value", "0")),
            signature=signature,
            timestamp=data.get("timestamp"),
            chain_id=data.get("chain_id"),
        )

    def to_dict(self, include_signature=True):
        data = {
            "sender_public_key": self.sender_public_key,
            "tx_type": self.tx_type,
            "data": self.data,
            "nonce": self.nonce,
            "value": str(self.value),
            "timestamp": self.timestamp,
            "chain_id": self.chain_id,
        }
        if include_signature and self.signature:
            data["signature"] = self.signature
        return data

    def get_signing_data(self) -> bytes:
        """Returns the canonical byte representation for signing."""
        return msgpack.packb(self.to_dict(include_signature=False), use_bin_type=True)

    def sign(self, private_key):
        self.signature = sign(private_key, self.get_signing_data())

    def verify_signature(self):
        if not self.signature:
            return False
        return verify_signature(
            self.sender_public_key,
            self.signature,
            self.get_signing_data()
        )

    @property
    def sender(self) -> bytes:
        return public_key_to_address(self.sender_public_key)

    @property
    def id(self) -> bytes:
        """The unique hash identifier of the transaction."""
        return generate_hash(self.get_signing_data())

    def validate_basic(self) -> tuple[bool, str]:
        """
        Performs basic validation checks on the transaction.
        Returns (is_valid, error_message)
        """
        if not self.verify_signature():
            return False, "Invalid signature"

        if self.value < 0:
            return False, "Negative value"

        required = REQUIRED_FIELDS.get(self.tx_type)
        if required is None:
            return False, f"Unknown transaction type: {self.tx_type}"

        missing = [f for f in required if f not in self.data]
        if missing:
            return False, f"{self.tx_type} requires {', '.join(repr(f) for f in missing)}"

        return True, ""

    def __repr__(self) -> str:
        return f"Transaction(type={self.tx_type}, nonce={self.nonce}, id={self.id.hex()[:16]})"
