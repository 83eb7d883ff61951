"""
POS Migration Engine

Moves point-of-sale exports into a commerce platform through a validated
field mapping.

Supports:
- Schema detection and AI-assisted mapping suggestions with local fallbacks
- Record transformation and target-schema validation
- Token-bucket rate limiting and adaptive batch sizing
- Exponential-backoff retries for transient API failures
- Asynchronous bulk jobs for large datasets
- Post-migration integrity verification and reporting
"""

__version__ = "0.1.0"
