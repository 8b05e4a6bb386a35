"""
Authorization Domain

Role assignments and the subscription-driven publisher role.
"""
