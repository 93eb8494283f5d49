"""
Core modules for tokmeter.

This package contains timestamp parsing, date ranges, pricing
resolution, cost calculation and usage aggregation.
"""
