"""Community verifications resolver.

Checks whether trusted principals have issued verification records about a
subject, caching each principal's records for a bounded window.
"""

__version__ = "0.2.1"
