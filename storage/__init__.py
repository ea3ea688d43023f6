"""
Storage package: handoff store between stages and HTTP retry helpers.
"""
