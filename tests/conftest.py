"""Root conftest for all tests."""

pytest_plugins = ["tests.plugins.db_fixtures"]

# Shared test constants
USER_ID = 1001
OTHER_USER_ID = 2002
