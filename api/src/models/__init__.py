"""Data models for the dosage API.

This package contains Pydantic models for request/response validation,
drug catalog records, error bodies and rate limit decisions.
"""
