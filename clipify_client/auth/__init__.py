"""
Authentication package for the Clipify desktop client.

This package contains the secure token store, the refresh-token exchange,
the deep-link callback parser, the login session coordinator and the
authentication error handler.
"""
