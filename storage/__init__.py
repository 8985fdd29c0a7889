"""
Storage package: HTTP response cache, retry helper and verdict history.
"""
