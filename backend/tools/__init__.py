"""
Operator tools for the check-in service
"""
