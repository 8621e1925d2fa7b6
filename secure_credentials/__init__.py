"""
secure_credentials - multi-device two-factor authentication service
"""

__version__ = "1.0.0"
