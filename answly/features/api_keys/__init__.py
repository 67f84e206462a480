"""
API key feature module.

Organization-owned keys for machine clients, gated by validation, a per-key
rate window and a per-key daily quota.
"""
