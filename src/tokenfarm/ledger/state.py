from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List

from tokenfarm.ledger.accrual import current_index
from tokenfarm.ledger.participants import pending_reward_of

Json = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class UserInfo:
    """Read-only copy of one user record."""

    account: str
    staking_balance: int = 0
    reward_per_share_paid: int = 0
    pending_rewards: int = 0
    staker_slot: int = 0
    is_staking: bool = False
    has_staked: bool = False

    @classmethod
    def from_record(cls, account: str, rec: Any) -> "UserInfo":
        r = rec if isinstance(rec, dict) else {}
        return cls(
            account=str(account),
            staking_balance=int(r.get("staking_balance", 0) or 0),
            reward_per_share_paid=int(r.get("reward_per_share_paid", 0) or 0),
            pending_rewards=int(r.get("pending_rewards", 0) or 0),
            staker_slot=int(r.get("staker_slot", 0) or 0),
            is_staking=bool(r.get("is_staking", False)),
            has_staked=bool(r.get("has_staked", False)),
        )

    def to_json(self) -> Json:
        return {
            "account": self.account,
            "staking_balance": self.staking_balance,
            "reward_per_share_paid": self.reward_per_share_paid,
            "pending_rewards": self.pending_rewards,
            "staker_slot": self.staker_slot,
            "is_staking": self.is_staking,
            "has_staked": self.has_staked,
        }


@dataclass(frozen=True, slots=True)
class FarmView:
    """
    Immutable read-only farm view used by the API and by tests.
    """

    farm: Dict[str, Any] = field(default_factory=dict)
    users: Dict[str, Any] = field(default_factory=dict)
    stakers: List[str] = field(default_factory=list)

    @classmethod
    def from_state(cls, state: Dict[str, Any]) -> "FarmView":
        return cls(
            farm=copy.deepcopy(state.get("farm", {})) if isinstance(state.get("farm"), dict) else {},
            users=copy.deepcopy(state.get("users", {})) if isinstance(state.get("users"), dict) else {},
            stakers=list(state.get("stakers", [])) if isinstance(state.get("stakers"), list) else [],
        )

    @property
    def reward_per_block(self) -> int:
        return int(self.farm.get("reward_per_block", 0) or 0)

    @property
    def total_staked(self) -> int:
        return int(self.farm.get("total_staked", 0) or 0)

    @property
    def acc_reward_per_share(self) -> int:
        return int(self.farm.get("acc_reward_per_share", 0) or 0)

    @property
    def last_reward_block(self) -> int:
        return int(self.farm.get("last_reward_block", 0) or 0)

    def user(self, account: str) -> UserInfo:
        return UserInfo.from_record(account, self.users.get(account))

    def pending_rewards(self, account: str, block: int) -> int:
        """Harvestable amount at `block`, including accrual not yet settled."""
        rec = self.users.get(account)
        if not isinstance(rec, dict):
            return 0
        return pending_reward_of(rec, current_index(self.farm, block))

    def to_json(self) -> Json:
        return {
            "reward_per_block": self.reward_per_block,
            "total_staked": self.total_staked,
            "acc_reward_per_share": self.acc_reward_per_share,
            "last_reward_block": self.last_reward_block,
            "staker_count": len(self.stakers),
        }
