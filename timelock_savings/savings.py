"""
Savings Ledger Module

Owns every deposit, enforces the ACTIVE -> WITHDRAWN state machine and keeps
the aggregate totals used to bound administrative extraction.

Every mutating operation runs under a re-entrant lock inside one storage
transaction and follows check, then mutate, then transfer: the deposit is
marked WITHDRAWN and totals are updated before the asset is asked to move
tokens, and a rejected transfer rolls the whole transaction back. A mutating
call made from inside a transfer (an asset callback re-entering the ledger)
is refused with ReentrantCall before it touches any state, so nothing it
did can be undone later by the outer rollback.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional
from enum import Enum
import threading

from .asset import AssetInterface
from .audit import AuditTrail, AuditEventType
from .events import (
    EventDispatcher, EventPayload, DomainEvent, DepositRecorded, DepositWithdrawn,
    create_deposit_recorded_event, create_deposit_withdrawn_event
)
from .exceptions import (
    InvalidAmount, DepositNotFound, AlreadyWithdrawn, TransferFailed,
    Unauthorized, InsufficientSurplus, ReentrantCall, SavingsLedgerError
)
from .logging_config import get_logger, log_action
from .rewards import RewardPolicy, RewardInputs, PayoutQuote
from .storage import StorageInterface, StorageRecord


class DepositState(Enum):
    """Deposit lifecycle states"""
    ACTIVE = "active"        # Locked and accruing
    WITHDRAWN = "withdrawn"  # Paid out, terminal


@dataclass(frozen=True)
class DepositId:
    """Stable reference to a deposit: position in its owner's sequence"""
    owner: str
    index: int

    @property
    def record_id(self) -> str:
        return f"{self.owner}:{self.index}"


@dataclass
class Deposit(StorageRecord):
    """
    One locked sum. Amount and start time never change; the slot is kept
    after withdrawal so ids stay stable.
    """
    owner: str
    index: int
    amount: int
    start_time: datetime
    state: DepositState = DepositState.ACTIVE
    withdrawn_at: Optional[datetime] = None
    matured_at_withdrawal: Optional[bool] = None
    principal_paid: Optional[int] = None
    reward_or_penalty_paid: Optional[int] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise InvalidAmount("Deposit amount must be positive")

    @property
    def deposit_id(self) -> DepositId:
        return DepositId(owner=self.owner, index=self.index)

    @property
    def is_active(self) -> bool:
        return self.state == DepositState.ACTIVE

    def mark_withdrawn(self, when: datetime, quote: PayoutQuote) -> None:
        """Transition ACTIVE -> WITHDRAWN, recording what was paid"""
        if not self.is_active:
            raise AlreadyWithdrawn(f"Deposit {self.deposit_id.record_id} is already withdrawn")

        self.state = DepositState.WITHDRAWN
        self.withdrawn_at = when
        self.updated_at = when
        self.matured_at_withdrawal = quote.matured
        self.principal_paid = quote.principal_paid
        self.reward_or_penalty_paid = quote.reward_or_penalty

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['start_time'] = self.start_time.isoformat()
        result['state'] = self.state.value
        result['withdrawn_at'] = self.withdrawn_at.isoformat() if self.withdrawn_at else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Deposit':
        data['start_time'] = datetime.fromisoformat(data['start_time'])
        data['state'] = DepositState(data['state'])
        if data.get('withdrawn_at'):
            data['withdrawn_at'] = datetime.fromisoformat(data['withdrawn_at'])
        return super().from_dict(data)


@dataclass
class LedgerTotals:
    """Aggregate ledger state, maintained incrementally"""
    total_principal_locked: int = 0
    active_deposit_count: int = 0
    total_rewards_paid: int = 0
    total_penalties_collected: int = 0
    total_reserve_funded: int = 0
    total_surplus_extracted: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerTotals':
        return cls(**data)


@dataclass(frozen=True)
class DepositView:
    """Read-only projection of a deposit"""
    owner: str
    index: int
    amount: int
    start_time: datetime
    state: DepositState
    reward_if_withdrawn_now: int


@dataclass(frozen=True)
class WithdrawalResult:
    """What a withdrawal paid out"""
    principal_paid: int
    reward_or_penalty_paid: int
    matured: bool
    payout: int


# Totals fields that can be recomputed from the deposit records alone
_DERIVED_TOTALS = (
    'total_principal_locked',
    'active_deposit_count',
    'total_rewards_paid',
    'total_penalties_collected',
)


class SavingsLedger:
    """
    Time-locked savings ledger
    """

    def __init__(
        self,
        storage: StorageInterface,
        asset: AssetInterface,
        policy: RewardPolicy,
        admin_principal: str,
        audit_trail: Optional[AuditTrail] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        min_deposit_amount: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        if min_deposit_amount is not None and min_deposit_amount <= 0:
            raise ValueError("Minimum deposit amount must be positive")

        self.storage = storage
        self.asset = asset
        self.policy = policy
        self.admin_principal = admin_principal
        self.audit_trail = audit_trail
        self.event_dispatcher = event_dispatcher
        self.min_deposit_amount = min_deposit_amount
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._operation_in_progress: Optional[str] = None
        self.logger = get_logger("timelock_savings.ledger")

        self.deposits_table = "deposits"
        self.sequences_table = "deposit_sequences"
        self.totals_table = "ledger_totals"
        self.totals_id = "totals"

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def deposit(self, owner: str, amount: int) -> DepositId:
        """
        Lock a new deposit for an owner

        Args:
            owner: Principal making the deposit
            amount: Positive integer token amount

        Returns:
            DepositId of the new ACTIVE deposit

        Raises:
            InvalidAmount: If amount is not a positive int or is below the minimum
            TransferFailed: If the tokens could not be pulled from the owner
        """
        self._validate_amount(amount, owner, action="deposit")
        if self.min_deposit_amount is not None and amount < self.min_deposit_amount:
            raise self._rejected(
                InvalidAmount(f"Deposit amount {amount} is below the minimum of {self.min_deposit_amount}"),
                owner, action="deposit"
            )

        with self._exclusive(owner, action="deposit"):
            with self.storage.atomic():
                now = self._now()
                index = self._next_index(owner)
                deposit = Deposit(
                    id=DepositId(owner=owner, index=index).record_id,
                    created_at=now,
                    updated_at=now,
                    owner=owner,
                    index=index,
                    amount=amount,
                    start_time=now
                )
                self._save_deposit(deposit)
                self.storage.save(self.sequences_table, owner, {'owner': owner, 'next_index': index + 1})

                totals = self._load_totals()
                totals.total_principal_locked += amount
                totals.active_deposit_count += 1
                self._save_totals(totals)

                self._audit(AuditEventType.DEPOSIT_CREATED, "deposit", deposit.id, owner, {
                    'amount': amount,
                    'index': index,
                    'start_time': now
                })

                self._transfer_in(owner, amount, action="deposit")

        log_action(self.logger, "info", f"Deposit {deposit.id} recorded",
                   principal=owner, action="deposit", deposit_id=deposit.id,
                   amount=amount)
        self._publish(create_deposit_recorded_event(
            DepositRecorded(owner=owner, amount=amount, deposit_index=index)
        ))
        return deposit.deposit_id

    def withdraw(self, caller: str, deposit_index: int) -> WithdrawalResult:
        """
        Withdraw one of the caller's deposits

        Matured deposits pay principal plus reward, earlier withdrawals pay
        principal minus the early-exit penalty.

        Args:
            caller: Principal requesting the withdrawal
            deposit_index: Index in the caller's deposit sequence

        Returns:
            WithdrawalResult with the amounts paid

        Raises:
            DepositNotFound: If the caller has no deposit at that index
            AlreadyWithdrawn: If the deposit is no longer ACTIVE
            ReentrantCall: If called while another ledger operation is in progress
            TransferFailed: If the payout could not be sent
        """
        with self._exclusive(caller, action="withdraw"):
            with self.storage.atomic():
                deposit = self._load_deposit(caller, deposit_index)
                if not deposit.is_active:
                    raise self._rejected(
                        AlreadyWithdrawn(f"Deposit {deposit.id} is already withdrawn"),
                        caller, action="withdraw"
                    )

                now = self._now()
                quote = self.policy.quote(RewardInputs(
                    amount=deposit.amount,
                    elapsed=self._elapsed(deposit, now)
                ))

                deposit.mark_withdrawn(now, quote)
                self._save_deposit(deposit)

                totals = self._load_totals()
                totals.total_principal_locked -= deposit.amount
                totals.active_deposit_count -= 1
                if quote.matured:
                    totals.total_rewards_paid += quote.reward_or_penalty
                else:
                    totals.total_penalties_collected += quote.reward_or_penalty
                self._save_totals(totals)

                self._audit(AuditEventType.DEPOSIT_WITHDRAWN, "deposit", deposit.id, caller, {
                    'amount': deposit.amount,
                    'matured': quote.matured,
                    'principal_paid': quote.principal_paid,
                    'reward_or_penalty_paid': quote.reward_or_penalty,
                    'payout': quote.payout
                })

                # State is already WITHDRAWN; the transfer is the last step
                if quote.payout > 0:
                    self._transfer_out(deposit.owner, quote.payout, action="withdraw")

        log_action(self.logger, "info", f"Deposit {deposit.id} withdrawn",
                   principal=caller, action="withdraw", deposit_id=deposit.id,
                   amount=deposit.amount, payout=quote.payout, details={'matured': quote.matured})
        self._publish(create_deposit_withdrawn_event(DepositWithdrawn(
            owner=deposit.owner,
            deposit_index=deposit.index,
            principal_paid=quote.principal_paid,
            reward_or_penalty_paid=quote.reward_or_penalty
        )))
        return WithdrawalResult(
            principal_paid=quote.principal_paid,
            reward_or_penalty_paid=quote.reward_or_penalty,
            matured=quote.matured,
            payout=quote.payout
        )

    def admin_extract_surplus(self, caller: str, require_surplus: bool = False) -> int:
        """
        Send the balance held above current liabilities to the administrator

        Liabilities count the full principal of every ACTIVE deposit plus the
        reward already accrued by matured ones, so the extraction never
        touches depositor funds and every ACTIVE deposit stays payable.

        Args:
            caller: Principal requesting the extraction
            require_surplus: Raise InsufficientSurplus instead of returning 0

        Returns:
            Amount extracted, 0 when there is no surplus

        Raises:
            Unauthorized: If caller is not the administrator
            InsufficientSurplus: If require_surplus is set and there is no surplus
            TransferFailed: If the extraction could not be sent
        """
        if caller != self.admin_principal:
            raise self._rejected(
                Unauthorized(f"{caller} is not allowed to extract surplus"),
                caller, action="extract_surplus"
            )

        with self._exclusive(caller, action="extract_surplus"):
            with self.storage.atomic():
                held = self.held_balance()
                liabilities = self._liabilities(self._now())
                surplus = max(0, held - liabilities)

                if surplus == 0:
                    if require_surplus:
                        raise InsufficientSurplus(
                            f"Held balance {held} does not exceed liabilities {liabilities}"
                        )
                    log_action(self.logger, "info", "No surplus to extract",
                               principal=caller, action="extract_surplus",
                               details={'held_balance': held, 'liabilities': liabilities})
                    return 0

                totals = self._load_totals()
                totals.total_surplus_extracted += surplus
                self._save_totals(totals)

                self._audit(AuditEventType.SURPLUS_EXTRACTED, "ledger", self.totals_id, caller, {
                    'held_balance': held,
                    'liabilities': liabilities,
                    'extracted': surplus
                })

                self._transfer_out(caller, surplus, action="extract_surplus")

        log_action(self.logger, "info", f"Extracted surplus of {surplus}",
                   principal=caller, action="extract_surplus", payout=surplus,
                   details={'held_balance': held, 'liabilities': liabilities})
        self._publish(EventPayload(
            event_type=DomainEvent.SURPLUS_EXTRACTED,
            entity_type="ledger",
            entity_id=self.totals_id,
            data={'admin': caller, 'extracted': surplus, 'liabilities': liabilities}
        ))
        return surplus

    def fund_reserve(self, funder: str, amount: int) -> int:
        """
        Add tokens that back future rewards without creating a deposit

        Raises:
            InvalidAmount: If amount is not a positive int
            TransferFailed: If the tokens could not be pulled from the funder
        """
        self._validate_amount(amount, funder, action="fund_reserve")

        with self._exclusive(funder, action="fund_reserve"):
            with self.storage.atomic():
                totals = self._load_totals()
                totals.total_reserve_funded += amount
                self._save_totals(totals)

                self._audit(AuditEventType.RESERVE_FUNDED, "ledger", self.totals_id, funder, {
                    'amount': amount
                })

                self._transfer_in(funder, amount, action="fund_reserve")

        log_action(self.logger, "info", f"Reserve funded with {amount}",
                   principal=funder, action="fund_reserve", amount=amount)
        self._publish(EventPayload(
            event_type=DomainEvent.RESERVE_FUNDED,
            entity_type="ledger",
            entity_id=self.totals_id,
            data={'funder': funder, 'amount': amount}
        ))
        return amount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_deposit(self, owner: str, deposit_index: int) -> DepositView:
        """Get a deposit with the reward it would earn if withdrawn now"""
        with self._lock:
            deposit = self._load_deposit(owner, deposit_index)
            return self._view(deposit, self._now())

    def list_deposits(self, owner: str) -> List[DepositView]:
        """Get all deposits of an owner in index order"""
        with self._lock:
            now = self._now()
            deposits = [Deposit.from_dict(data)
                        for data in self.storage.find(self.deposits_table, {'owner': owner})]
            deposits.sort(key=lambda d: d.index)
            return [self._view(d, now) for d in deposits]

    def get_totals(self) -> LedgerTotals:
        """Get the incrementally maintained totals"""
        with self._lock:
            return self._load_totals()

    def liabilities(self) -> int:
        """
        Reserved amount that bounds surplus extraction

        Full principal of every ACTIVE deposit plus the reward accrued so far.
        An immature deposit counts at its full principal, not at the
        amount - penalty it would be paid today; see owed_if_withdrawn_now()
        for that figure.
        """
        with self._lock:
            return self._liabilities(self._now())

    def owed_if_withdrawn_now(self) -> int:
        """Exact total payout if every ACTIVE deposit were withdrawn at this moment"""
        with self._lock:
            return self._owed_now(self._now())

    def held_balance(self) -> int:
        """Tokens currently in ledger custody"""
        return self.asset.balance_of(self.asset.custodian)

    def surplus(self) -> int:
        """Held balance above current liabilities"""
        with self._lock:
            return max(0, self.held_balance() - self._liabilities(self._now()))

    def solvency_report(self) -> Dict[str, Any]:
        """Held balance against liabilities at the current moment"""
        with self._lock:
            now = self._now()
            held = self.held_balance()
            liabilities = self._liabilities(now)
            return {
                'held_balance': held,
                'liabilities': liabilities,
                'owed_if_withdrawn_now': self._owed_now(now),
                'surplus': max(0, held - liabilities),
                'shortfall': max(0, liabilities - held),
                'solvent': held >= liabilities
            }

    def verify_totals(self) -> Dict[str, Any]:
        """
        Recompute the deposit-derived totals from every deposit record and
        compare them with the stored totals

        Returns:
            Dictionary with 'valid', 'stored', 'recomputed' and 'mismatches'
        """
        with self._lock:
            stored = self._load_totals().to_dict()
            recomputed = {name: 0 for name in _DERIVED_TOTALS}

            for data in self.storage.load_all(self.deposits_table):
                deposit = Deposit.from_dict(data)
                if deposit.is_active:
                    recomputed['total_principal_locked'] += deposit.amount
                    recomputed['active_deposit_count'] += 1
                elif deposit.matured_at_withdrawal:
                    recomputed['total_rewards_paid'] += deposit.reward_or_penalty_paid
                else:
                    recomputed['total_penalties_collected'] += deposit.reward_or_penalty_paid

            mismatches = {
                name: {'stored': stored[name], 'recomputed': recomputed[name]}
                for name in _DERIVED_TOTALS if stored[name] != recomputed[name]
            }
            return {
                'valid': not mismatches,
                'stored': {name: stored[name] for name in _DERIVED_TOTALS},
                'recomputed': recomputed,
                'mismatches': mismatches
            }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _exclusive(self, principal: str, action: str):
        """Hold the ledger lock for one mutating operation, refusing nested ones"""
        with self._lock:
            if self._operation_in_progress is not None:
                raise self._rejected(
                    ReentrantCall(f"Cannot {action} while {self._operation_in_progress} is in progress"),
                    principal, action=action
                )
            self._operation_in_progress = action
            try:
                yield
            finally:
                self._operation_in_progress = None

    def _now(self) -> datetime:
        return self._clock()

    @staticmethod
    def _elapsed(deposit: Deposit, now: datetime) -> int:
        # A clock that moved backwards counts as no time elapsed
        return max(0, int((now - deposit.start_time).total_seconds()))

    def _view(self, deposit: Deposit, now: datetime) -> DepositView:
        reward = 0
        if deposit.is_active:
            reward = self.policy.reward(RewardInputs(
                amount=deposit.amount,
                elapsed=self._elapsed(deposit, now)
            ))
        return DepositView(
            owner=deposit.owner,
            index=deposit.index,
            amount=deposit.amount,
            start_time=deposit.start_time,
            state=deposit.state,
            reward_if_withdrawn_now=reward
        )

    def _liabilities(self, now: datetime) -> int:
        # Principal is owed in full; a penalty is only earned once an early exit happens
        total = 0
        for deposit in self._active_deposits():
            total += deposit.amount + self.policy.reward(RewardInputs(
                amount=deposit.amount,
                elapsed=self._elapsed(deposit, now)
            ))
        return total

    def _owed_now(self, now: datetime) -> int:
        total = 0
        for deposit in self._active_deposits():
            total += self.policy.quote(RewardInputs(
                amount=deposit.amount,
                elapsed=self._elapsed(deposit, now)
            )).payout
        return total

    def _active_deposits(self) -> List[Deposit]:
        return [Deposit.from_dict(data)
                for data in self.storage.find(self.deposits_table, {'state': DepositState.ACTIVE.value})]

    def _validate_amount(self, amount: Any, principal: str, action: str) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise self._rejected(
                InvalidAmount(f"Amount must be a positive integer, got {amount!r}"),
                principal, action=action
            )

    def _next_index(self, owner: str) -> int:
        sequence = self.storage.load(self.sequences_table, owner)
        return sequence['next_index'] if sequence else 0

    def _load_deposit(self, owner: str, deposit_index: int) -> Deposit:
        record_id = DepositId(owner=owner, index=deposit_index).record_id
        data = self.storage.load(self.deposits_table, record_id)
        if data is None:
            raise self._rejected(
                DepositNotFound(f"No deposit {deposit_index} for {owner}"),
                owner, action="lookup"
            )
        return Deposit.from_dict(data)

    def _save_deposit(self, deposit: Deposit) -> None:
        self.storage.save(self.deposits_table, deposit.id, deposit.to_dict())

    def _load_totals(self) -> LedgerTotals:
        data = self.storage.load(self.totals_table, self.totals_id)
        return LedgerTotals.from_dict(data) if data else LedgerTotals()

    def _save_totals(self, totals: LedgerTotals) -> None:
        self.storage.save(self.totals_table, self.totals_id, totals.to_dict())

    def _transfer_in(self, holder: str, amount: int, action: str) -> None:
        if not self.asset.transfer_in(holder, amount):
            raise self._failed_transfer(f"Could not transfer {amount} in from {holder}", holder, action)

    def _transfer_out(self, holder: str, amount: int, action: str) -> None:
        if not self.asset.transfer_out(holder, amount):
            raise self._failed_transfer(f"Could not transfer {amount} out to {holder}", holder, action)

    def _failed_transfer(self, message: str, principal: str, action: str) -> TransferFailed:
        log_action(self.logger, "error", message, principal=principal, action=action)
        return TransferFailed(message)

    def _rejected(self, error: SavingsLedgerError, principal: str, action: str) -> SavingsLedgerError:
        log_action(self.logger, "warning", str(error), principal=principal, action=action,
                   details={'error': type(error).__name__})
        return error

    def _audit(self, event_type: AuditEventType, entity_type: str, entity_id: str,
               user_id: str, metadata: Dict[str, Any]) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                user_id=user_id
            )

    def _publish(self, event: EventPayload) -> None:
        if self.event_dispatcher:
            self.event_dispatcher.publish(event)
