"""Core game domain package for the mystery engine."""

# This package contains:
# - Domain models (`models`) and provider payload parsing (`parser`)
# - The three engines (`mystery_generator`, `judge`, `evaluator`)
# - Session state (`state`) and the player-safe view (`public_mystery`)
