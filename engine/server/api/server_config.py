# Local trending server configuration.
#
# Plain module constants, read once at startup. Command-line flags in
# server.py and db/jobs/run-popular-etl.py override the ones that matter
# operationally (paths, strategy, schedule).

# Network defaults.
DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 7070
DEV_SERVER_PORT = 7071

# SQLite catalog + signals DB, relative to the repo root.
DEFAULT_DB_PATH = "engine/server/db/trending.db"

# Radius search strategy: "indexed" (R*Tree bounding boxes) or "exhaustive"
# (full haversine scan). Chosen once at startup.
DEFAULT_SPATIAL_STRATEGY = "indexed"

# Local trending request defaults and accepted bounds.
DEFAULT_TRENDING_RADIUS_KM = 50.0
DEFAULT_TRENDING_LIMIT = 10
DEFAULT_TRENDING_DAYS = 7
MAX_TRENDING_RADIUS_KM = 500.0
MIN_TRENDING_LIMIT = 1
MAX_TRENDING_LIMIT = 100
MIN_TRENDING_DAYS = 1
MAX_TRENDING_DAYS = 30

# Popular ETL: trailing window, list size and the daily UTC run time.
POPULAR_ETL_WINDOW_DAYS = 7
POPULAR_ETL_TOP_K = 3
POPULAR_ETL_SCHEDULE_HOUR_UTC = 2
POPULAR_ETL_SCHEDULE_MINUTE_UTC = 0
DEFAULT_POPULAR_ETL_SCHEDULER = True

# Login attempts per IP: fixed window.
LOGIN_RATE_LIMIT_MAX_ATTEMPTS = 5
LOGIN_RATE_LIMIT_WINDOW_SECONDS = 60

# Comments per user: rolling window.
COMMENT_RATE_LIMIT_MAX_ACTIONS = 60
COMMENT_RATE_LIMIT_WINDOW_SECONDS = 3600

# Request body cap for JSON endpoints (bytes).
DEFAULT_JSON_BODY_LIMIT = 64_000

# Log view mode hint: "focused" or "verbose".
DEFAULT_TRENDING_LOG_PROFILE = "focused"
