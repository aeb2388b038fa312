"""
httpqueue test suite.

This package contains tests for the httpqueue library:
- Priority queue ordering
- Rate limit cooldown tracking
- Dispatcher admission, concurrency and cooldown behaviour
- Queue facade and configuration
- Reference urllib request unit
- Metrics hooks
"""
