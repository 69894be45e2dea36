"""
Core modules for Spend Monitor.

This package contains the alert evaluation, delivery, push endpoint
lifecycle and budget-gated enrichment functionality.
"""
