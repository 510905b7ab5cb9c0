"""
Settings module for the rebalancer project.

Usage:
    Development: DJANGO_SETTINGS_MODULE=config.settings.development
    Testing: DJANGO_SETTINGS_MODULE=config.settings.testing
"""
