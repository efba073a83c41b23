"""TierPulse: multi-tier cache orchestration with an activity pulse feed."""
