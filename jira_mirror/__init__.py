# Jira Mirror Package
"""Mirror Jira epics and issues for a team into a local database."""

__version__ = '1.0.0'
