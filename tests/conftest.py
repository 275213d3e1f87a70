"""
Test environment: an in-memory SQLite database and a fixed internal auth
secret, set before any application module reads its configuration.
"""
import os
import sys

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("INTERNAL_AUTH_SECRET", "test-internal-auth-secret")
for _key in ("NODE_ENV", "ENVIRONMENT", "APP_ENV"):
    os.environ.pop(_key, None)

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
