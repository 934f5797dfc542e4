"""FastAPI service for veterinary drug dosage calculation.

This package provides REST API endpoints computing doses and administration
volumes for dogs and cats, backed by a drug catalog and guarded by API key
authentication and per-key rate limits.
"""

__version__ = "1.0.0"
