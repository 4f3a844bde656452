import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Optional

from .access import AccessControl, StaticAccessControl
from .config import Settings
from .log import get_logger
from .models import (
    EventType,
    Survey,
    LedgerEvent,
    ClaimReceipt,
    WithdrawalReceipt,
    LedgerConfiguration,
    CustodyBalanceResponse,
    EventHistoryResponse,
)
from .tokens import TokenAccount, TokenBank, TokenProvider

log = get_logger("service")


class LedgerServiceError(Exception):
    pass


class InvalidArgumentError(LedgerServiceError):
    pass


class InvalidConfigurationError(LedgerServiceError):
    pass


class NotConfiguredError(LedgerServiceError):
    pass


class SurveyNotFoundError(LedgerServiceError):
    pass


class SurveyInactiveError(LedgerServiceError):
    pass


class AlreadyParticipatedError(LedgerServiceError):
    pass


class InsufficientFundsError(LedgerServiceError):
    pass


class TransferFailedError(LedgerServiceError):
    pass


class TransferTimeoutError(TransferFailedError):
    """The transfer did not answer in time and may still complete."""

    def __init__(self, message: str, future: Future):
        super().__init__(message)
        self.future = future


class UnauthorizedError(LedgerServiceError):
    pass


class InMemoryStorage:
    def __init__(self, reward_token_id: Optional[str] = None):
        self.surveys: dict[int, dict] = {}
        self.participations: set[tuple[int, str]] = set()
        self.participant_counts: dict[int, int] = {}
        self.pending_claims: set[tuple[int, str]] = set()
        self.events: list[dict] = []
        self.next_survey_id: int = 0
        self.reward_token_id: Optional[str] = reward_token_id


class LedgerService:
    """
    Survey reward ledger.

    Owns survey and participation records and pays each (survey, user) pair
    at most once out of the custody balance held by a TokenAccount. A single
    re-entrant lock serialises every mutation; the claim path keeps it held
    from eligibility check to transfer result so a participant mark whose
    transfer failed is rolled back before anyone can see it.

    A transfer that times out is rolled back but stays pending until the
    token account answers: further claims for the pair are refused, and a
    late success restores the participant mark.
    """

    def __init__(
        self,
        tokens: TokenProvider,
        access: AccessControl,
        storage: Optional[InMemoryStorage] = None,
        transfer_timeout: float = 5.0,
        max_transfer_workers: int = 8,
    ):
        self.tokens = tokens
        self.access = access
        self.storage = storage or InMemoryStorage()
        self.transfer_timeout = transfer_timeout
        self.max_transfer_workers = max_transfer_workers
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=max_transfer_workers, thread_name_prefix="ledger-transfer")
        self._stalled_lock = threading.Lock()
        self._stalled = 0
        self._subscribers: list[Callable[[LedgerEvent], None]] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        tokens: Optional[TokenProvider] = None,
        access: Optional[AccessControl] = None,
    ) -> "LedgerService":
        return cls(
            tokens=tokens or TokenBank(custodian=settings.ledger_account),
            access=access or StaticAccessControl(settings.admins),
            storage=InMemoryStorage(reward_token_id=settings.reward_token_id),
            transfer_timeout=settings.transfer_timeout,
        )

    @property
    def ledger_account(self) -> str:
        return self.tokens.custodian

    @property
    def stalled_transfers(self) -> int:
        with self._stalled_lock:
            return self._stalled

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # -- administrator operations ------------------------------------------

    def set_reward_token(self, caller_id: Optional[str], token_id: Optional[str]) -> str:
        self._require_admin(caller_id)
        if token_id is None or not str(token_id).strip():
            raise InvalidConfigurationError("Reward token id must not be empty")
        token_id = str(token_id).strip()

        with self._lock:
            previous = self.storage.reward_token_id
            if previous and previous != token_id and self.storage.surveys:
                # Existing surveys keep their amounts but are now paid in the new asset.
                log.warning(
                    f"Reward token changed from {previous} to {token_id} "
                    f"with {len(self.storage.surveys)} existing surveys"
                )
            self.storage.reward_token_id = token_id
            self._emit(EventType.REWARD_TOKEN_SET, {"token_id": token_id})

        log.info(f"Reward token set to {token_id} by {caller_id}")
        return token_id

    def create_survey(self, caller_id: Optional[str], reward_amount: int) -> int:
        self._require_admin(caller_id)
        if isinstance(reward_amount, bool) or not isinstance(reward_amount, int) or reward_amount <= 0:
            raise InvalidArgumentError(f"Reward amount must be a positive integer, got {reward_amount!r}")

        with self._lock:
            self._require_token()
            survey_id = self.storage.next_survey_id
            now = datetime.now(timezone.utc)
            self.storage.surveys[survey_id] = {
                "id": survey_id,
                "reward_amount": reward_amount,
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            }
            self.storage.participant_counts[survey_id] = 0
            self.storage.next_survey_id = survey_id + 1
            self._emit(EventType.SURVEY_CREATED, {"survey_id": survey_id, "reward_amount": reward_amount})

        log.info(f"Survey {survey_id} created with reward {reward_amount}")
        return survey_id

    def toggle_survey_status(self, caller_id: Optional[str], survey_id: int, active: bool) -> Survey:
        self._require_admin(caller_id)

        with self._lock:
            survey_data = self._get_survey_data(survey_id)
            updated = {**survey_data, "is_active": bool(active), "updated_at": datetime.now(timezone.utc)}
            self.storage.surveys[survey_id] = updated
            self._emit(EventType.SURVEY_STATUS_CHANGED, {"survey_id": survey_id, "active": bool(active)})
            survey = self._to_survey(updated)

        log.info(f"Survey {survey_id} is now {survey.status.value}")
        return survey

    def withdraw_remaining(self, caller_id: Optional[str], amount: int) -> WithdrawalReceipt:
        self._require_admin(caller_id)

        with self._lock:
            token_id = self._require_token()
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise InvalidArgumentError(f"Withdrawal amount must be a positive integer, got {amount!r}")

            try:
                self._transfer(self.tokens.account(token_id), caller_id, amount)
            except TransferTimeoutError as e:
                e.future.add_done_callback(partial(self._settle_withdrawal, caller_id, amount, token_id))
                raise
            self._emit(EventType.REWARDS_WITHDRAWN, {"to": caller_id, "amount": amount})

        log.info(f"Withdrew {amount} {token_id} to {caller_id}")
        return WithdrawalReceipt(to=caller_id, amount=amount, token_id=token_id)

    # -- participant operations --------------------------------------------

    def submit_and_claim(self, survey_id: int, user_id: str, response_proof: str) -> ClaimReceipt:
        with self._lock:
            token_id = self._require_token()
            survey_data = self._get_survey_data(survey_id)
            if not survey_data["is_active"]:
                log.info(f"Claim by {user_id} rejected: survey {survey_id} inactive")
                raise SurveyInactiveError(f"Survey {survey_id} is not active")

            key = (survey_id, user_id)
            if key in self.storage.participations:
                log.info(f"Claim by {user_id} rejected: already participated in survey {survey_id}")
                raise AlreadyParticipatedError(f"User {user_id} already participated in survey {survey_id}")
            if key in self.storage.pending_claims:
                log.info(f"Claim by {user_id} rejected: earlier transfer for survey {survey_id} still pending")
                raise TransferFailedError(
                    f"Earlier reward transfer to {user_id} for survey {survey_id} has an outcome pending"
                )

            if not user_id or not response_proof:
                raise InvalidArgumentError("User id and response proof must not be empty")

            amount = survey_data["reward_amount"]
            account = self.tokens.account(token_id)
            balance = account.balance_of(account.custodian)
            if balance < amount:
                log.info(f"Claim by {user_id} rejected: custody balance {balance} < reward {amount}")
                raise InsufficientFundsError(
                    f"Ledger balance {balance} is below the reward amount {amount} for survey {survey_id}"
                )

            self._mark(key)
            try:
                self._transfer(account, user_id, amount)
            except TransferFailedError as e:
                self._unmark(key)
                log.warning(f"Rolled back participation of {user_id} in survey {survey_id}")
                if isinstance(e, TransferTimeoutError):
                    self.storage.pending_claims.add(key)
                    e.future.add_done_callback(partial(self._settle_claim, key, amount, token_id))
                raise

            self._emit(EventType.REWARD_CLAIMED, {"survey_id": survey_id, "user_id": user_id, "amount": amount})

        log.info(f"Paid {amount} {token_id} to {user_id} for survey {survey_id}")
        return ClaimReceipt(survey_id=survey_id, user_id=user_id, amount=amount, token_id=token_id)

    # -- queries -------------------------------------------------------------

    def has_participated(self, survey_id: int, user_id: str) -> bool:
        with self._lock:
            return (survey_id, user_id) in self.storage.participations

    def get_survey(self, survey_id: int) -> Survey:
        with self._lock:
            return self._to_survey(self._get_survey_data(survey_id))

    def list_surveys(self) -> list[Survey]:
        with self._lock:
            return [self._to_survey(self.storage.surveys[i]) for i in sorted(self.storage.surveys)]

    def get_configuration(self) -> LedgerConfiguration:
        with self._lock:
            return LedgerConfiguration(
                reward_token_id=self.storage.reward_token_id,
                ledger_account=self.ledger_account,
                survey_count=self.storage.next_survey_id,
            )

    def custody_balance(self) -> CustodyBalanceResponse:
        with self._lock:
            token_id = self._require_token()
            account = self.tokens.account(token_id)
            return CustodyBalanceResponse(
                token_id=token_id,
                account=account.custodian,
                balance=account.balance_of(account.custodian),
            )

    def list_events(self, limit: int = 50, offset: int = 0) -> EventHistoryResponse:
        if limit < 1 or offset < 0:
            raise InvalidArgumentError(f"Invalid page limit={limit} offset={offset}")
        with self._lock:
            events = [LedgerEvent(**e) for e in self.storage.events]
        return EventHistoryResponse(events=events[offset:offset + limit], total_count=len(events))

    def subscribe(self, callback: Callable[[LedgerEvent], None]) -> None:
        with self._lock:
            self._subscribers.append(callback)

    # -- internals -----------------------------------------------------------

    def _require_admin(self, caller_id: Optional[str]) -> None:
        if not self.access.is_administrator(caller_id):
            log.warning(f"Rejected administrator operation from {caller_id!r}")
            raise UnauthorizedError(f"Caller {caller_id!r} is not an administrator")

    def _require_token(self) -> str:
        token_id = self.storage.reward_token_id
        if not token_id:
            raise NotConfiguredError("Reward token has not been configured")
        return token_id

    def _get_survey_data(self, survey_id: int) -> dict:
        survey_data = self.storage.surveys.get(survey_id)
        if not survey_data:
            raise SurveyNotFoundError(f"Survey {survey_id} not found")
        return survey_data

    def _to_survey(self, survey_data: dict) -> Survey:
        count = self.storage.participant_counts.get(survey_data["id"], 0)
        return Survey(**survey_data, participant_count=count)

    def _mark(self, key: tuple[int, str]) -> None:
        self.storage.participations.add(key)
        self.storage.participant_counts[key[0]] = self.storage.participant_counts.get(key[0], 0) + 1

    def _unmark(self, key: tuple[int, str]) -> None:
        if key in self.storage.participations:
            self.storage.participations.discard(key)
            self.storage.participant_counts[key[0]] -= 1

    def _transfer(self, account: TokenAccount, to: str, amount: int) -> None:
        with self._stalled_lock:
            if self._stalled >= self.max_transfer_workers:
                log.error(f"All {self._stalled} transfer workers are stuck; refusing transfer to {to}")
                raise TransferFailedError("No transfer worker available, earlier transfers are still stuck")

        future = self._executor.submit(account.transfer, to, amount)
        try:
            ok = future.result(timeout=self.transfer_timeout)
        except FuturesTimeoutError as e:
            if future.cancel():
                raise TransferFailedError(f"Transfer of {amount} to {to} timed out before starting") from e
            with self._stalled_lock:
                self._stalled += 1
            future.add_done_callback(self._release_worker)
            log.error(f"Transfer of {amount} to {to} timed out after {self.transfer_timeout}s")
            raise TransferTimeoutError(f"Transfer of {amount} to {to} timed out", future) from e
        except Exception as e:
            log.error(f"Transfer of {amount} to {to} raised: {e}")
            raise TransferFailedError(f"Transfer of {amount} to {to} failed: {e}") from e

        if not ok:
            log.error(f"Transfer of {amount} to {to} was refused by token {account.token_id}")
            raise TransferFailedError(f"Transfer of {amount} to {to} was refused")

    def _release_worker(self, future: Future) -> None:
        with self._stalled_lock:
            self._stalled -= 1

    @staticmethod
    def _late_success(future: Future) -> bool:
        return not future.cancelled() and future.exception() is None and bool(future.result())

    def _settle_claim(self, key: tuple[int, str], amount: int, token_id: str, future: Future) -> None:
        survey_id, user_id = key
        with self._lock:
            self.storage.pending_claims.discard(key)
            if not self._late_success(future):
                log.info(f"Late transfer to {user_id} for survey {survey_id} failed; claim may be retried")
                return
            self._mark(key)
            self._emit(EventType.REWARD_CLAIMED, {"survey_id": survey_id, "user_id": user_id, "amount": amount})
        log.warning(f"Late transfer paid {amount} {token_id} to {user_id} for survey {survey_id}; participation restored")

    def _settle_withdrawal(self, to: str, amount: int, token_id: str, future: Future) -> None:
        if not self._late_success(future):
            log.info(f"Late withdrawal of {amount} {token_id} to {to} failed")
            return
        with self._lock:
            self._emit(EventType.REWARDS_WITHDRAWN, {"to": to, "amount": amount})
        log.warning(f"Late withdrawal of {amount} {token_id} to {to} completed")

    def _emit(self, event_type: EventType, payload: dict) -> LedgerEvent:
        event_data = {
            "sequence": len(self.storage.events),
            "event_type": event_type,
            "payload": payload,
            "created_at": datetime.now(timezone.utc),
        }
        self.storage.events.append(event_data)
        event = LedgerEvent(**event_data)

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                log.exception(f"Event subscriber failed on {event_type.value}")
        return event
