"""
Common — shared data model, errors, logging, config and geodesy helpers.
"""
