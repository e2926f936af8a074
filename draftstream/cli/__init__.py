"""
Command-line interface for draftstream.
"""
