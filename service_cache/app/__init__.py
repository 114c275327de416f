"""
FPL data cache service package.
"""
