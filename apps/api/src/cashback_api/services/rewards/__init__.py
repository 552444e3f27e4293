"""Delayed cashback reward pipeline: intake, storage, issuance and state transitions."""
