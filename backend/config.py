import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables in priority order:
# 1. backend/.env (lowest priority)
# 2. repo_root/.env (overrides backend)
# 3. repo_root/.env.local (highest priority - overrides everything)
repo_root = Path(__file__).parent.parent
env_local = repo_root / ".env.local"
env_file = repo_root / ".env"
backend_env = Path(__file__).parent / ".env"

if backend_env.exists():
    load_dotenv(dotenv_path=backend_env, override=False)
if env_file.exists():
    load_dotenv(dotenv_path=env_file, override=True)
if env_local.exists():
    load_dotenv(dotenv_path=env_local, override=True)

# Neo4j configuration - read from environment variables
NEO4J_URI = os.getenv("NEO4J_URI", "bolt://localhost:7687")
NEO4J_USER = os.getenv("NEO4J_USER", "neo4j")
NEO4J_PASSWORD = os.getenv("NEO4J_PASSWORD")  # Required - no default for security
# Empty means the server's default database
NEO4J_DATABASE = os.getenv("NEO4J_DATABASE") or None

# -----------------------------------------------------------------------------
# HTTP / CORS
# -----------------------------------------------------------------------------
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if o.strip()
]
# Any localhost port is allowed during development
CORS_ORIGIN_REGEX = os.getenv("CORS_ORIGIN_REGEX", r"http://(localhost|127\.0\.0\.1)(:\d+)?") or None

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# -----------------------------------------------------------------------------
# Real-time
# -----------------------------------------------------------------------------
# Idle seconds before the server pings a WebSocket client
WS_KEEPALIVE_SECONDS = float(os.getenv("WS_KEEPALIVE_SECONDS", "30"))
