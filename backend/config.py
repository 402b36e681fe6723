"""Application-wide configuration constants."""

import os
import platform
from pathlib import Path

# --- Identity ---
DEVICE_NAME = platform.node() or "Connect Booth"  # advertised display name

# --- Storage ---
CONFIG_DIR = Path(
    os.environ.get("CONNECT_BOOTH_HOME", Path.home() / ".connect-booth")
)
os.makedirs(CONFIG_DIR, exist_ok=True)
SETTINGS_FILE = CONFIG_DIR / "settings.json"

IDENTITY_KEY = "zeroconf_device_id"
CREDENTIALS_KEY = "zeroconf_credentials"

# --- Control API ---
API_HOST = "0.0.0.0"
API_PORT = 8766

# --- Discovery ---
SERVICE_TYPE = "_spotify-connect._tcp.local."
ADVERTISED_PATH = "/"
ADVERTISED_VERSION = "1.0"
RESOLVE_TIMEOUT_MS = 3000
REFRESH_TIMEOUT = 2.0  # seconds
REFRESH_POLL_INTERVAL = 0.1  # seconds

# --- Handshake ---
PROTOCOL_VERSION = "2.9.0"
LIBRARY_VERSION = "0.1.0"
BRAND_DISPLAY_NAME = "Connect Booth"
MODEL_DISPLAY_NAME = "Spotify Connect"

EMULATOR_HOST = "0.0.0.0"
EMULATOR_PORT_START = 5555
EMULATOR_PORT_ATTEMPTS = 50

DEFAULT_RECEIVER_PORT = 4070
FALLBACK_PATHS = ["/zc", "/zeroconf", "/", "/spotify"]
REQUEST_TIMEOUT = 5.0  # seconds
RESET_SETTLE_DELAY = 0.5  # seconds
LOGIN_SETTLE_DELAY = 1.0  # seconds
