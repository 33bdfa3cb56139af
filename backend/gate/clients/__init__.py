"""
Permit authority clients
"""

from .soap_authority import SoapAuthorityClient

__all__ = ["SoapAuthorityClient"]
