import os

# Keep the module-level engine off Postgres while tests import the app.
os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('CATALOG_PROVIDER', 'mock')
