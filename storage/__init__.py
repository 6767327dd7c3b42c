"""
Storage package for Interval Quiz Bot

SQLAlchemy schema, subscriber rows and pending poll stores.
"""
