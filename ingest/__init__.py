"""
Ingest package: GitHub REST client and pull-request statistics.
"""
