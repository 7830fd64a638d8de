"""Frontends - ways to use the broker.

Submodules:
    client/  Terminal tabs connected to a broker
    cli/     Command-line interface
"""
