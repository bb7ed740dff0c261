"""Incentive services module."""
