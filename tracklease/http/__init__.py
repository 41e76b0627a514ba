"""
HTTP — client API and the gateway webhook endpoint.

    from tracklease.http import create_app

    services = await build_services(Settings.from_env())
    app = create_app(services)
"""

from tracklease.http._app import STATUS, LeaseHTTPError, create_app, status_for

__all__ = ("create_app", "STATUS", "status_for", "LeaseHTTPError")
