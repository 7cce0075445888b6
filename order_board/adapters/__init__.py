"""Integration adapters.

Adapters connect the order board services to external systems. Only the
Discord adapter exists today.
"""
