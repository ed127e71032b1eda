"""
News Monitor.

Watches a public news listing page, remembers which items have already
been delivered and mails new ones either immediately or as a daily batch.
"""

__version__ = "1.0.0"
