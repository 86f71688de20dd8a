import os
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

ENV = os.getenv("ENV", "TEST").upper()

DEFAULTS = {
    "TEST": {
        "MALL_ID": "sopexkorea",
        "API_VERSION": "2025-06-01",
        "REDIRECT_URI": "http://localhost:5050/auth/callback",
    },
    "LIVE": {
        "MALL_ID": "sopexkorea",
        "API_VERSION": "2025-06-01",
        "REDIRECT_URI": "https://spx-price.vercel.app/api/auth/callback",
    }
}

cfg = DEFAULTS["LIVE"] if ENV == "LIVE" else DEFAULTS["TEST"]

CAFE24_MALL_ID       = os.getenv("CAFE24_MALL_ID", cfg["MALL_ID"])
CAFE24_BASE_URL      = os.getenv("CAFE24_BASE_URL", f"https://{CAFE24_MALL_ID}.cafe24api.com/api/v2")
CAFE24_API_VERSION   = os.getenv("CAFE24_API_VERSION", cfg["API_VERSION"])
CAFE24_CLIENT_ID     = os.getenv("CAFE24_CLIENT_ID", "")
CAFE24_CLIENT_SECRET = os.getenv("CAFE24_CLIENT_SECRET", "")
CAFE24_REDIRECT_URI  = os.getenv("CAFE24_REDIRECT_URI", cfg["REDIRECT_URI"])
CAFE24_SCOPES = os.getenv(
    "CAFE24_SCOPES",
    "mall.read_product,mall.write_product,mall.read_order,mall.write_order,"
    "mall.read_shipping,mall.write_shipping",
)
SHOP_NO = int(os.getenv("SHOP_NO", "1"))

# Shipment registration
DEFAULT_SHIPPING_COMPANY_CODE = os.getenv("DEFAULT_SHIPPING_COMPANY_CODE", "0003")  # Hanjin
DEFAULT_SHIPMENT_STATUS = os.getenv("DEFAULT_SHIPMENT_STATUS", "standby")
BULK_MAX_BATCH = 100  # hard limit of /admin/shipments
ORDER_PAGE_LIMIT = int(os.getenv("ORDER_PAGE_LIMIT", "500"))
ORDER_PAGE_DELAY_SECONDS = float(os.getenv("ORDER_PAGE_DELAY_SECONDS", "0.5"))
DEFAULT_ORDER_STATUS = os.getenv("DEFAULT_ORDER_STATUS", "N20")
ORDER_LOOKBACK_DAYS = int(os.getenv("ORDER_LOOKBACK_DAYS", "30"))

# Price update queue
PRICE_UPDATE_RPS = float(os.getenv("PRICE_UPDATE_RPS", "3"))
PRICE_UPDATE_MAX_RETRIES = int(os.getenv("PRICE_UPDATE_MAX_RETRIES", "3"))

# Email recipients
ADMIN_EMAILS = [e.strip() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()]

EMAIL_CONFIG = {
    "smtp_server": os.getenv("SMTP_SERVER", "smtp.gmail.com"),
    "smtp_port": int(os.getenv("SMTP_PORT", 587)),
    "smtp_username": os.getenv("SMTP_USERNAME", ""),
    "smtp_password": os.getenv("SMTP_PASSWORD", ""),  # set via ENV
    "from_addr": os.getenv("FROM_EMAIL", ""),
}

# ---------------- Paths (stable, absolute) ----------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Logging
LOG_DIR = os.getenv("LOG_DIR", os.path.join(BASE_DIR, "logs"))
LOG_FILE = os.getenv("LOG_FILE", "backoffice.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG").upper()
LOG_CONSOLE = os.getenv("LOG_CONSOLE", "").lower() in ("1", "true", "yes")  # mirror to stderr (CLI runs)

# Local state DB (SQLite): tokens + upload run ledger
STATE_DB_PATH = os.getenv("STATE_DB_PATH", os.path.join(BASE_DIR, "state.db"))

# Failure / match CSV exports
EXPORT_DIR = os.getenv("EXPORT_DIR", os.path.join(BASE_DIR, "exports"))


# -------------- HTTP Session --------------
def build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=2.0,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET", "POST", "PUT"],
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session

SESSION = build_session()

