from __future__ import annotations

from solana_exporter.metrics import Gauge, GaugeVec

PUBKEY_LABEL = "pubkey"
STATE_LABEL = "state"


class PrometheusGauges:
    """Every gauge family the exporter publishes.

    Per-validator families are labelled by vote account address, except the
    leader-slot families, which are labelled by node identity.
    """

    def __init__(self) -> None:
        # Epoch progress
        self.current_epoch = Gauge("solana_current_epoch", "Current epoch", integer=True)
        self.current_epoch_first_slot = Gauge(
            "solana_current_epoch_first_slot", "First slot of the current epoch", integer=True
        )
        self.current_epoch_last_slot = Gauge(
            "solana_current_epoch_last_slot", "Last slot of the current epoch", integer=True
        )
        self.slot_height = Gauge("solana_slot_height", "Current absolute slot", integer=True)
        self.block_height = Gauge("solana_block_height", "Current block height", integer=True)
        self.transaction_count = Gauge(
            "solana_transaction_count", "Total number of confirmed transactions since genesis", integer=True
        )

        # Vote accounts
        self.active_validators = GaugeVec(
            "solana_active_validators",
            "Number of vote accounts by state (current or delinquent)",
            STATE_LABEL,
            integer=True,
        )
        self.validator_activated_stake = GaugeVec(
            "solana_validator_activated_stake",
            "Stake in lamports delegated to the vote account and active in this epoch",
            PUBKEY_LABEL,
            integer=True,
        )
        self.validator_last_vote = GaugeVec(
            "solana_validator_last_vote", "Most recent slot voted on", PUBKEY_LABEL, integer=True
        )
        self.validator_root_slot = GaugeVec(
            "solana_validator_root_slot", "Current root slot of the vote account", PUBKEY_LABEL, integer=True
        )
        self.validator_delinquent = GaugeVec(
            "solana_validator_delinquent", "1 if the vote account is delinquent, else 0", PUBKEY_LABEL, integer=True
        )

        # Leader slots, by node identity
        self.leader_slots = GaugeVec(
            "solana_leader_slots", "Leader slots assigned so far in the current epoch", PUBKEY_LABEL, integer=True
        )
        self.skipped_slot_percent = GaugeVec(
            "solana_skipped_slot_percent",
            "Percentage of leader slots skipped so far in the current epoch",
            PUBKEY_LABEL,
        )

        # Rewards
        self.current_staking_apy = GaugeVec(
            "solana_current_staking_apy",
            "Staking APY in percent of the current epoch",
            PUBKEY_LABEL,
        )
        self.average_staking_apy = GaugeVec(
            "solana_average_staking_apy",
            "Staking APY in percent averaged over the lookback window",
            PUBKEY_LABEL,
        )
        self.validator_rewards = GaugeVec(
            "solana_validator_rewards",
            "Vote account balance in lamports after the current epoch's voting reward",
            PUBKEY_LABEL,
            integer=True,
        )
