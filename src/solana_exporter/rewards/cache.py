from __future__ import annotations

import json
import math
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from solana_exporter.errors import SerializationError
from solana_exporter.rewards.models import EPOCH_DURATION_DAYS, VoterApy
from solana_exporter.schemas import RAW_REWARDS, RawReward, dump_rewards
from solana_exporter.storage.sqlite_db import (
    APY_TREE_NAME,
    EPOCH_LENGTH_TREE_NAME,
    EPOCH_REWARDS_TREE_NAME,
    EPOCH_VOTER_APY_TREE_NAME,
    SqliteDB,
    canon_json,
    epoch_key,
)


def _encode(tree: str, epoch: int, obj: Any, *, allow_inf: bool = False) -> str:
    try:
        return canon_json(obj, allow_nan=allow_inf)
    except (TypeError, ValueError) as e:
        raise SerializationError("encode_failed", f"could not serialise {tree} for epoch {epoch}", str(e)) from e


def _apy_value(tree: str, epoch: int, value: float) -> float:
    # APY figures may be infinite; NaN is never a valid figure.
    v = float(value)
    if math.isnan(v):
        raise SerializationError("encode_failed", f"{tree} for epoch {epoch} has a NaN value")
    return v


def _decode(tree: str, epoch: int, raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise SerializationError("decode_failed", f"could not deserialise {tree} for epoch {epoch}", str(e)) from e


def _float_map(tree: str, epoch: int, obj: Any) -> Dict[str, float]:
    if not isinstance(obj, dict):
        raise SerializationError("decode_failed", f"{tree} for epoch {epoch} is not a JSON object")
    out: Dict[str, float] = {}
    for k, v in obj.items():
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise SerializationError("decode_failed", f"{tree} for epoch {epoch} has a non-numeric value", k)
        out[str(k)] = float(v)
    return out


class EpochCache:
    """Epoch-keyed cache of rewards and APY figures.

    Namespaces:
      - epoch rewards:   list of RawReward, as returned by the node
      - epoch APY:       voter -> percent for one epoch
      - epoch length:    duration in days (reserved, reads use the constant)
      - epoch voter APY: voter -> VoterApy aggregate

    Every put overwrites the whole value for its epoch. Nothing is deleted.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    @property
    def db(self) -> SqliteDB:
        return self._db

    def put_epoch_rewards(self, epoch: int, records: List[RawReward]) -> None:
        payload = _encode(EPOCH_REWARDS_TREE_NAME, epoch, dump_rewards(list(records)))
        self._db.put(EPOCH_REWARDS_TREE_NAME, epoch_key(epoch), payload)

    def get_epoch_rewards(self, epoch: int) -> Optional[List[RawReward]]:
        raw = self._db.get(EPOCH_REWARDS_TREE_NAME, epoch_key(epoch))
        if raw is None:
            return None
        try:
            return RAW_REWARDS.validate_json(raw)
        except ValidationError as e:
            raise SerializationError(
                "decode_failed", f"could not deserialise epoch rewards for epoch {epoch}", str(e)
            ) from e

    def put_epoch_apy(self, epoch: int, apys: Mapping[str, float]) -> None:
        obj = {str(k): _apy_value(APY_TREE_NAME, epoch, v) for k, v in apys.items()}
        payload = _encode(APY_TREE_NAME, epoch, obj, allow_inf=True)
        self._db.put(APY_TREE_NAME, epoch_key(epoch), payload)

    def get_epoch_apy(self, epoch: int) -> Optional[Dict[str, float]]:
        raw = self._db.get(APY_TREE_NAME, epoch_key(epoch))
        if raw is None:
            return None
        return _float_map(APY_TREE_NAME, epoch, _decode(APY_TREE_NAME, epoch, raw))

    def get_epoch_duration(self, epoch: int) -> float:
        # Fixed length until real durations are tracked; storage is not consulted.
        return EPOCH_DURATION_DAYS

    def put_epoch_duration(self, epoch: int, days: float) -> None:
        self._db.put(EPOCH_LENGTH_TREE_NAME, epoch_key(epoch), _encode(EPOCH_LENGTH_TREE_NAME, epoch, float(days)))

    def put_epoch_voter_apy(self, epoch: int, apys: Mapping[str, VoterApy]) -> None:
        tree = EPOCH_VOTER_APY_TREE_NAME
        obj = {
            str(k): {
                "current_apy": _apy_value(tree, epoch, v.current_apy),
                "average_apy": _apy_value(tree, epoch, v.average_apy),
            }
            for k, v in apys.items()
        }
        self._db.put(tree, epoch_key(epoch), _encode(tree, epoch, obj, allow_inf=True))

    def get_epoch_voter_apy(self, epoch: int) -> Optional[Dict[str, VoterApy]]:
        raw = self._db.get(EPOCH_VOTER_APY_TREE_NAME, epoch_key(epoch))
        if raw is None:
            return None
        obj = _decode(EPOCH_VOTER_APY_TREE_NAME, epoch, raw)
        if not isinstance(obj, dict):
            raise SerializationError("decode_failed", f"epoch voter APY for epoch {epoch} is not a JSON object")
        out: Dict[str, VoterApy] = {}
        for voter, rec in obj.items():
            fields = _float_map(EPOCH_VOTER_APY_TREE_NAME, epoch, rec)
            try:
                out[str(voter)] = VoterApy(current_apy=fields["current_apy"], average_apy=fields["average_apy"])
            except KeyError as e:
                raise SerializationError("decode_failed", f"epoch voter APY for {voter} is incomplete", str(e)) from e
        return out

    def cached_reward_epochs(self) -> List[int]:
        return [int.from_bytes(k, "big") for k in self._db.keys(EPOCH_REWARDS_TREE_NAME)]
