"""Pytest configuration and fixtures."""
# std imports
import logging


def pytest_configure(config):
    """Record debug logging of telnetd, displayed for failed tests."""
    logging.getLogger('telnetd').setLevel(logging.DEBUG)
