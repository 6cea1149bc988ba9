"""
Core primitives: models, constants, exceptions, logging, retry policy.
"""
