"""
Users module - Staff accounts (admin and jury).
"""
