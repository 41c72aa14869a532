"""
Core modules for Oracle Guard.

This package contains admission control, queuing, caching, retry and
failover, replay and cost tracking for oracle calls.
"""
