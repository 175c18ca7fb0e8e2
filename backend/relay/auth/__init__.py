"""Session teardown for browser clients (cookie clearing on logout)."""
