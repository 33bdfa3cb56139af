"""
Gate validation services
"""
