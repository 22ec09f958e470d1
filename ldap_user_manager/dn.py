"""Distinguished name construction for user entries."""

ATTR_UID = 'uid'


def build_dn(username: str, user_base_dn: str) -> str:
    """
    Build the DN of a user entry.

    Special DN characters in the username are not escaped, so names such as
    'a,b' or 'a+b' produce a DN that addresses a different entry.

    Args:
        username: User name, used as the uid RDN value
        user_base_dn: Base DN under which user entries live

    Returns:
        DN of the form 'uid=<username>,<user_base_dn>'
    """
    return f"{ATTR_UID}={username},{user_base_dn}"
