# src/tokenfarm/ledger/constants.py
from __future__ import annotations

"""Farm monetary constants.

- Both tokens use 18 decimals
- Reward index is a 1e18 fixed-point accumulator
- Default emission: 1 DAPP per block, capped at 100 DAPP per block
"""

# Token precision (1 token = 1e18 units)
TOKEN_DECIMALS: int = 18
TOKEN: int = 10**TOKEN_DECIMALS

# Fixed-point scale of acc_reward_per_share
SCALE: int = 10**18

# Reward schedule
DEFAULT_REWARD_PER_BLOCK: int = 1 * TOKEN
MAX_REWARD_PER_BLOCK: int = 100 * TOKEN

# Canonical token ids
STAKE_TOKEN_ID: str = "LPT"
REWARD_TOKEN_ID: str = "DAPP"

# Canonical farm account id (spender / custodian of staked LP)
FARM_ACCOUNT_ID: str = "TOKEN_FARM"
