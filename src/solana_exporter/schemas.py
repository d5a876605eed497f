"""Pydantic models for node RPC payloads.

The same models decode cached epoch rewards, so a record read back from the
cache is equal to the record the node returned.
"""

from __future__ import annotations

import base64
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class RewardType(str, Enum):
    FEE = "Fee"
    RENT = "Rent"
    STAKING = "Staking"
    VOTING = "Voting"


class _RpcModel(BaseModel):
    """Camel-case RPC object; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class RawReward(_RpcModel):
    pubkey: str
    lamports: int
    post_balance: int = Field(..., alias="postBalance")
    reward_type: Optional[str] = Field(default=None, alias="rewardType")
    commission: Optional[int] = None

    def is_kind(self, kind: RewardType) -> bool:
        return self.reward_type == kind.value


class EpochInfo(_RpcModel):
    epoch: int = Field(..., ge=0)
    slot_index: int = Field(..., alias="slotIndex", ge=0)
    slots_in_epoch: int = Field(..., alias="slotsInEpoch", gt=0)
    absolute_slot: int = Field(default=0, alias="absoluteSlot", ge=0)
    block_height: Optional[int] = Field(default=None, alias="blockHeight")
    transaction_count: Optional[int] = Field(default=None, alias="transactionCount")


class BlockRewards(_RpcModel):
    rewards: List[RawReward] = Field(default_factory=list)

    @field_validator("rewards", mode="before")
    @classmethod
    def _null_rewards(cls, v: Any) -> Any:
        return [] if v is None else v


class AccountInfo(_RpcModel):
    lamports: int
    owner: str
    data: bytes = b""
    executable: bool = False
    rent_epoch: Optional[int] = Field(default=None, alias="rentEpoch")

    @field_validator("data", mode="before")
    @classmethod
    def _decode_data(cls, v: Any) -> Any:
        # getMultipleAccounts with encoding=base64 returns [payload, "base64"].
        if isinstance(v, (list, tuple)) and len(v) == 2:
            payload, encoding = v
            if encoding != "base64":
                raise ValueError(f"unsupported account data encoding: {encoding!r}")
            return base64.b64decode(str(payload), validate=True)
        if isinstance(v, str):
            return base64.b64decode(v, validate=True)
        return v


class VoteAccount(_RpcModel):
    vote_pubkey: str = Field(..., alias="votePubkey")
    node_pubkey: str = Field(..., alias="nodePubkey")
    activated_stake: int = Field(default=0, alias="activatedStake")
    commission: int = 0
    last_vote: int = Field(default=0, alias="lastVote")
    root_slot: int = Field(default=0, alias="rootSlot")
    epoch_vote_account: bool = Field(default=False, alias="epochVoteAccount")

    @field_validator("root_slot", "last_vote", mode="before")
    @classmethod
    def _null_slot(cls, v: Any) -> Any:
        return 0 if v is None else v


class VoteAccounts(_RpcModel):
    current: List[VoteAccount] = Field(default_factory=list)
    delinquent: List[VoteAccount] = Field(default_factory=list)


class SlotRange(_RpcModel):
    first_slot: int = Field(..., alias="firstSlot")
    last_slot: int = Field(..., alias="lastSlot")


class BlockProduction(_RpcModel):
    """`getBlockProduction` value: identity -> (leader slots, blocks produced)."""

    by_identity: Dict[str, Tuple[int, int]] = Field(default_factory=dict, alias="byIdentity")
    slot_range: Optional[SlotRange] = Field(default=None, alias="range")


RAW_REWARDS = TypeAdapter(List[RawReward])


def dump_rewards(records: List[RawReward]) -> list:
    return [r.model_dump(by_alias=True) for r in records]
