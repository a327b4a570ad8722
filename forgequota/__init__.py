"""ForgeQuota - per-principal storage quotas for a self-hosted code forge."""

__version__ = "0.1.0"
