"""
Scoring package: eligibility rubric and its YAML configuration.
"""
