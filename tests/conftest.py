import os

# Settings are read on first import of app.core.config; pin a throwaway
# environment before any test module imports the app.
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["NOTIFICATION_CHANNEL"] = "log"
