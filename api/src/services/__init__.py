"""Dosage calculation services.

This package contains the request validator, unit conversion, dose
resolution, range classification, the calculation engine and the
sliding window rate limiter used by the API endpoints.
"""
