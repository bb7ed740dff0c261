"""Incentive schemas module."""
