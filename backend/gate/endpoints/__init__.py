"""
Gate validation API endpoints
"""
