"""
Models package: settings, domain exceptions and API schemas.
"""
