"""
Asset Interface Module

The ledger never moves tokens itself; it instructs an asset implementation
to pull tokens from a depositor into the ledger's custody or push them back
out. Implementations report failure by returning False, which the ledger
treats as a hard abort of the operation in progress.
"""

from abc import ABC, abstractmethod
from typing import Optional
import logging
import threading

from .storage import InMemoryStorage, StorageInterface


logger = logging.getLogger(__name__)


class AssetInterface(ABC):
    """Fungible token movements consumed by the ledger"""

    @property
    @abstractmethod
    def custodian(self) -> str:
        """Holder id under which the ledger's tokens are kept"""
        pass

    @abstractmethod
    def transfer_in(self, from_holder: str, amount: int) -> bool:
        """Move tokens from a holder into ledger custody"""
        pass

    @abstractmethod
    def transfer_out(self, to_holder: str, amount: int) -> bool:
        """Move tokens from ledger custody to a holder"""
        pass

    @abstractmethod
    def balance_of(self, holder: str) -> int:
        """Current token balance of a holder"""
        pass


class StoredTokenAsset(AssetInterface):
    """
    Token balances kept in a storage backend

    Given the ledger's own storage, every balance change joins the ledger's
    open transaction and is rolled back with it. Without a storage backend
    the balances live in process memory.
    """

    def __init__(self, storage: Optional[StorageInterface] = None,
                 custodian: str = "savings-ledger", table_name: str = "token_balances"):
        self.storage = storage or InMemoryStorage()
        self.table_name = table_name
        self._custodian = custodian
        self._lock = threading.RLock()

    @property
    def custodian(self) -> str:
        return self._custodian

    def mint(self, holder: str, amount: int) -> None:
        """Create tokens for a holder"""
        if amount <= 0:
            raise ValueError("Mint amount must be positive")
        with self._lock:
            with self.storage.atomic():
                self._set_balance(holder, self._balance(holder) + amount)

    def _balance(self, holder: str) -> int:
        data = self.storage.load(self.table_name, holder)
        return data['balance'] if data else 0

    def _set_balance(self, holder: str, balance: int) -> None:
        self.storage.save(self.table_name, holder, {'holder': holder, 'balance': balance})

    def _move(self, source: str, target: str, amount: int) -> bool:
        with self._lock:
            with self.storage.atomic():
                available = self._balance(source)
                if amount <= 0 or available < amount:
                    logger.warning(f"Rejected transfer of {amount} from {source} to {target}")
                    return False
                self._set_balance(source, available - amount)
                self._set_balance(target, self._balance(target) + amount)
                return True

    def transfer_in(self, from_holder: str, amount: int) -> bool:
        return self._move(from_holder, self._custodian, amount)

    def transfer_out(self, to_holder: str, amount: int) -> bool:
        return self._move(self._custodian, to_holder, amount)

    def balance_of(self, holder: str) -> int:
        with self._lock:
            return self._balance(holder)
