"""ziplinegate: secure staging gate in front of the Zipline upload API.

Caller-supplied paths are confined to a per-credential sandbox, content is
scanned for secrets and staged in memory or on disk, and every staged handle
is released whether the remote call succeeds or not.
"""

__version__ = "0.1.0"
