"""
Shared helpers: UTC time handling and atomic Redis scripts
"""
