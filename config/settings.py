import os
from dotenv import load_dotenv

load_dotenv()

# filesystem | database
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "filesystem")
STORAGE_PATH = os.getenv("STORAGE_PATH", "storage")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite://db.sqlite3")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
