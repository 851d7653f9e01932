"""Global HTTP client."""

import requests

USER_AGENT = "cluster-deployer"

_session = None


def get_session() -> requests.Session:
    """Get a session object."""
    global _session  # noqa: PLW0603

    if _session is None:
        _session = requests.Session()
        _session.headers["User-Agent"] = USER_AGENT
    return _session
