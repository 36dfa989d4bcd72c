"""
Reward Contract Service

Builds calls to the CryptoQuest reward contract on Base and reads the
display-only values (reward token, pool balance, token metadata).

The claim call is ``claimReward(bytes32 quizIdHashed, uint256 tierId,
uint256 percentage, uint256 denominator)``. The contract refuses a second
claim for the same hashed quiz id, which makes the chain the final authority
on replays.
"""

import asyncio
import logging
from typing import Optional

from eth_account import Account
from web3 import Web3

from cache_utils import blockchain_cache
from config import (
    BASE_RPC_URL,
    CHAIN_ID,
    REWARD_CONTRACT_ADDRESS,
    REWARD_DENOMINATOR,
)
from .errors import ClaimTransactionError, ContractNotConfigured
from .models import get_tier, mask_wallet_address

logger = logging.getLogger(__name__)


CONTRACT_ABI = [
    {
        "inputs": [
            {"name": "quizIdHashed", "type": "bytes32"},
            {"name": "tierId", "type": "uint256"},
            {"name": "percentage", "type": "uint256"},
            {"name": "denominator", "type": "uint256"}
        ],
        "name": "claimReward",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "rewardToken",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "getContractBalance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    }
]

ERC20_ABI = [
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    }
]

CLAIM_REWARD_SIGNATURE = "claimReward(bytes32,uint256,uint256,uint256)"
CLAIM_REWARD_TYPES = ['bytes32', 'uint256', 'uint256', 'uint256']


def hash_claim_id(session_id: str) -> bytes:
    """keccak256(abi.encodePacked(session_id)) - the on-chain claim identifier"""
    return bytes(Web3.solidity_keccak(['string'], [session_id]))


def to_hex(value: bytes) -> str:
    text = bytes(value).hex()
    return text if text.startswith('0x') else '0x' + text


class RewardContractService:
    """Service for the CryptoQuest reward contract"""

    def __init__(self, w3: Optional[Web3] = None, contract_address: Optional[str] = None,
                 chain_id: Optional[int] = None):
        self.w3 = w3 or Web3(Web3.HTTPProvider(BASE_RPC_URL))
        self.chain_id = chain_id if chain_id is not None else CHAIN_ID
        address = contract_address or REWARD_CONTRACT_ADDRESS
        self.contract_address = Web3.to_checksum_address(address) if address else None
        self.contract = None

        if self.contract_address:
            self.contract = self.w3.eth.contract(address=self.contract_address, abi=CONTRACT_ABI)
            logger.info(f"📋 Reward contract loaded: {self.contract_address}")
        else:
            logger.warning("⚠️ REWARD_CONTRACT_ADDRESS not set - reward claims disabled")

    @property
    def is_configured(self) -> bool:
        return self.contract_address is not None

    def encode_claim(self, claim_id: bytes, tier_id: int, percentage: int,
                     denominator: int = REWARD_DENOMINATOR) -> str:
        selector = Web3.keccak(text=CLAIM_REWARD_SIGNATURE)[:4]
        arguments = self.w3.codec.encode(CLAIM_REWARD_TYPES, [claim_id, tier_id, percentage, denominator])
        return to_hex(bytes(selector) + bytes(arguments))

    def build_claim_transaction(self, claim_id: bytes, tier, percentage: int) -> dict:
        """Unsigned claim transaction for the player's wallet to sign"""
        if not self.is_configured:
            raise ContractNotConfigured()
        if len(claim_id) != 32:
            raise ClaimTransactionError("Claim identifier must be 32 bytes")
        if isinstance(percentage, bool) or not isinstance(percentage, int) or not 0 <= percentage <= 100:
            raise ClaimTransactionError(f"Invalid percentage: {percentage!r}")

        tier = get_tier(tier)
        return {
            'to': self.contract_address,
            'chainId': self.chain_id,
            'data': self.encode_claim(claim_id, tier.contract_id, percentage),
        }

    def _read_token_info(self, wallet_address: Optional[str]) -> dict:
        token_address = self.contract.functions.rewardToken().call()
        token = self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
        decimals = token.functions.decimals().call()
        info = {
            'token_address': token_address,
            'symbol': token.functions.symbol().call(),
            'decimals': decimals,
            'balance': None,
        }
        if wallet_address:
            balance = token.functions.balanceOf(Web3.to_checksum_address(wallet_address)).call()
            info['balance'] = balance / 10 ** decimals
        return info

    def get_token_info(self, wallet_address: Optional[str] = None) -> dict:
        """Reward token symbol/decimals and the wallet's balance, for display only"""
        cache_key = f"token_info:{(wallet_address or '').lower()}"
        cached = blockchain_cache.get(cache_key)
        if cached is not None:
            return cached

        if not self.is_configured:
            return {'symbol': None, 'decimals': 18, 'balance': None}
        try:
            info = self._read_token_info(wallet_address)
        except Exception as e:
            logger.error(f"❌ Error getting token info for {mask_wallet_address(wallet_address)}: {e}")
            return {'symbol': None, 'decimals': 18, 'balance': None}

        blockchain_cache.set(cache_key, info, ttl=60)
        return info

    def get_reward_pool(self) -> dict:
        """Total tokens held by the reward contract"""
        cached = blockchain_cache.get('reward_pool')
        if cached is not None:
            return cached

        if not self.is_configured:
            return {'balance': '0', 'symbol': 'Tokens'}
        try:
            info = self._read_token_info(None)
            balance_wei = self.contract.functions.getContractBalance().call()
            pool = {
                'balance': f"{balance_wei / 10 ** info['decimals']:,.2f}",
                'symbol': info['symbol'],
            }
        except Exception as e:
            logger.error(f"❌ Error getting reward pool: {e}")
            return {'balance': '0', 'symbol': 'Tokens'}

        blockchain_cache.set('reward_pool', pool)
        return pool


class LocalAccountSigner:
    """Signs and sends transactions from a locally held private key"""

    def __init__(self, private_key: str, w3: Optional[Web3] = None, gas_limit: int = 300000,
                 wait_for_receipt: bool = True, receipt_timeout: int = 120):
        if not private_key.startswith('0x'):
            private_key = '0x' + private_key
        self.account = Account.from_key(private_key)
        self.w3 = w3 or Web3(Web3.HTTPProvider(BASE_RPC_URL))
        self.gas_limit = gas_limit
        self.wait_for_receipt = wait_for_receipt
        self.receipt_timeout = receipt_timeout

    @property
    def address(self) -> str:
        return self.account.address

    def _send(self, tx: dict) -> str:
        txn = dict(tx)
        txn.setdefault('from', self.account.address)
        txn.setdefault('value', 0)
        txn.setdefault('nonce', self.w3.eth.get_transaction_count(self.account.address))
        txn.setdefault('gasPrice', int(self.w3.eth.gas_price * 1.2))
        if 'gas' not in txn:
            try:
                txn['gas'] = int(self.w3.eth.estimate_gas(txn) * 1.2)
            except Exception as e:
                # estimation reverts when the contract would reject the claim
                raise ClaimTransactionError(f"Transaction would revert: {e}") from e
        txn.pop('from', None)

        signed = self.account.sign_transaction(txn)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hash_hex = to_hex(tx_hash)
        logger.info(f"📡 Transaction sent: {tx_hash_hex}")

        if self.wait_for_receipt:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
            if receipt.status != 1:
                raise ClaimTransactionError(f"Transaction reverted: {tx_hash_hex}")
        return tx_hash_hex

    async def send_transaction(self, tx: dict) -> str:
        return await asyncio.to_thread(self._send, tx)
