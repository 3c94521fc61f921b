"""
balance_gate.py -- fund-then-authorize step run before every paid action.

Every paid call against the combat service (round request, stat upgrade,
healing-potion purchase) debits fee-currency from the acting participant, so
the participant must (1) hold enough balance and (2) have authorized the
service to spend it.  The funder identity tops participants up on demand.

Authorization is additive and never reclaimed: excess allowance left behind
by a cheaper action is harmless.
"""

from __future__ import annotations

import logging

from service_client import ServiceError

logger = logging.getLogger(__name__)


class FundingError(ServiceError):
    """The funder cannot cover a transfer.  Fatal: there is nobody else to ask."""


class BalanceGate:
    def __init__(self, client, funder: str, spender: str) -> None:
        self._client = client
        self.funder = funder
        self.spender = spender
        self._authorized: dict[str, int] = {}
        self._transferred: dict[str, int] = {}
        self.calls = 0

    def authorized(self, participant: str) -> int:
        """Total allowance this process has granted on behalf of *participant*."""
        return self._authorized.get(participant, 0)

    def transferred(self, participant: str) -> int:
        return self._transferred.get(participant, 0)

    def ensure_funded(self, participant: str, amount: int) -> None:
        amount = int(amount)
        if amount < 0:
            raise ValueError(f"negative fee: {amount}")
        if amount == 0:
            logger.debug("fee-free action for %s, nothing to authorize", participant)
            return

        self.calls += 1
        balance = self._client.token_balance(participant)
        if balance < amount:
            funder_balance = self._client.token_balance(self.funder)
            if funder_balance < amount:
                raise FundingError(
                    f"funder {self.funder} holds {funder_balance}, cannot cover {amount} for {participant}"
                )
            self._client.transfer(self.funder, participant, amount)
            self._transferred[participant] = self._transferred.get(participant, 0) + amount
            logger.debug("funded %s with %d (balance was %d)", participant, amount, balance)

        self._client.increase_allowance(participant, self.spender, amount)
        # Monotonic: only ever grows.
        self._authorized[participant] = self._authorized.get(participant, 0) + amount
