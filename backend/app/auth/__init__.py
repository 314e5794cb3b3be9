"""Identity module.

Credentials and token issuance live in the upstream auth layer. By the time a
request reaches this service it carries a verified user id and role, which
the dependencies here read and trust.

Dependencies:
    - current_identity: the verified caller of an HTTP request.
    - require_admin: same, restricted to the admin role.
"""

from .dependencies import Identity, current_identity, require_admin

__all__ = ["Identity", "current_identity", "require_admin"]
