"""
Configuration for draftstream.
"""
