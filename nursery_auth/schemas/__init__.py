"""
Pydantic schemas for API responses and requests
"""
