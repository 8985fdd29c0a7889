"""
Normalized GitHub entities and payload helpers.
"""
