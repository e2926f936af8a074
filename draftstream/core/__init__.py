"""
Core modules for Draft Stream.

This package contains usage accounting, quota enforcement, prompt
assembly, response caching, token buffering, quality scoring and the
streaming orchestrator.
"""
