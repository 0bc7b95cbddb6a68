from pathlib import Path

DEFAULT_CONFIG_PATH = Path("/etc/socfeed/config.yml")
DEFAULT_ALERT_DB_PATH = Path("/var/lib/socfeed/alerts.db")
DEFAULT_SOCKET_PATH = Path("/var/run/socfeed/socfeed.sock")

DEFAULT_BACKEND_URL = "http://localhost:5000"
