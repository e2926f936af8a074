"""
Draft Stream.

AI response streaming, caching, quality scoring and usage accounting
for the content drafting assistant.
"""

__version__ = "0.1.0"
