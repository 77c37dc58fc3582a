"""Service-account group reconciler.

Keeps an AD reference group in sync with the accounts of a container (OU)
and stamps a classification attribute on those accounts.
"""

__version__ = "1.0.0"
