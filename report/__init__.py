"""
Report package: render evaluations and history.
"""
