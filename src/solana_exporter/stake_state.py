"""Decoder for stake program account data.

Stake accounts are bincode-encoded `StakeStateV2` values:

    u32 tag      0 Uninitialized | 1 Initialized(Meta) | 2 Stake(Meta, Stake, flags) | 3 RewardsPool
    Meta         rent_exempt_reserve u64, staker [32], withdrawer [32],
                 lockup unix_timestamp i64, lockup epoch u64, custodian [32]   (120 bytes)
    Delegation   voter_pubkey [32], stake u64, activation_epoch u64,
                 deactivation_epoch u64, warmup_cooldown_rate f64
    credits_observed u64

All integers are little-endian.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from solders.pubkey import Pubkey

from solana_exporter.errors import SerializationError


class StakeStateKind(IntEnum):
    UNINITIALIZED = 0
    INITIALIZED = 1
    STAKE = 2
    REWARDS_POOL = 3


_TAG = struct.Struct("<I")
_META_SIZE = 120
_DELEGATION = struct.Struct("<32sQQQd")
_CREDITS = struct.Struct("<Q")

DELEGATION_OFFSET = _TAG.size + _META_SIZE


@dataclass(frozen=True, slots=True)
class Delegation:
    voter_pubkey: str
    stake: int
    activation_epoch: int
    deactivation_epoch: int
    warmup_cooldown_rate: float


@dataclass(frozen=True, slots=True)
class StakeState:
    kind: StakeStateKind
    delegation: Optional[Delegation] = None
    credits_observed: int = 0


def decode_stake_state(data: bytes) -> StakeState:
    if len(data) < _TAG.size:
        raise SerializationError("stake_state_short", "stake account data is shorter than its tag", len(data))

    (tag,) = _TAG.unpack_from(data, 0)
    try:
        kind = StakeStateKind(tag)
    except ValueError as e:
        raise SerializationError("stake_state_tag", f"unknown stake state tag {tag}") from e

    if kind in (StakeStateKind.UNINITIALIZED, StakeStateKind.REWARDS_POOL):
        return StakeState(kind=kind)

    if len(data) < DELEGATION_OFFSET:
        raise SerializationError("stake_state_short", "stake account data is shorter than its meta", len(data))

    if kind == StakeStateKind.INITIALIZED:
        return StakeState(kind=kind)

    end = DELEGATION_OFFSET + _DELEGATION.size + _CREDITS.size
    if len(data) < end:
        raise SerializationError("stake_state_short", "stake account data is shorter than its delegation", len(data))

    voter, stake, activation, deactivation, rate = _DELEGATION.unpack_from(data, DELEGATION_OFFSET)
    (credits,) = _CREDITS.unpack_from(data, DELEGATION_OFFSET + _DELEGATION.size)
    return StakeState(
        kind=kind,
        delegation=Delegation(
            voter_pubkey=str(Pubkey.from_bytes(voter)),
            stake=int(stake),
            activation_epoch=int(activation),
            deactivation_epoch=int(deactivation),
            warmup_cooldown_rate=float(rate),
        ),
        credits_observed=int(credits),
    )
