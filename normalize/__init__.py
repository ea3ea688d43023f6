"""
Normalize package: record types shared by every stage and payload mappers.
"""
