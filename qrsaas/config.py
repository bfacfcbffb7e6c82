import os
from pathlib import Path

# Diretório base do backend
BASE_DIR = Path(__file__).resolve().parent.parent

# Diretório onde as imagens de QR Code serão gravadas e servidas
STORAGE_DIR = Path(os.getenv("STORAGE_DIR", str(BASE_DIR / "storage")))

# URL pública base (para construir os links de redirect). Ajuste em produção.
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")

DATABASE_URL = os.getenv("DATABASE_URL")
# Tempo máximo (segundos) de espera por conexão/lock no banco
DB_TIMEOUT_SECONDS = float(os.getenv("DB_TIMEOUT_SECONDS", "5"))

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))

# Ex.: https://ipapi.co/{ip}/json/
GEOIP_URL = os.getenv("GEOIP_URL")
GEOIP_TIMEOUT_SECONDS = float(os.getenv("GEOIP_TIMEOUT_SECONDS", "1.0"))

# Sem REDIS_URL os contadores de rate limit ficam em memória do processo
REDIS_URL = os.getenv("REDIS_URL")

SCAN_RATE_LIMIT = int(os.getenv("SCAN_RATE_LIMIT", "60"))
SCAN_RATE_WINDOW_SECONDS = int(os.getenv("SCAN_RATE_WINDOW_SECONDS", "60"))
QR_CREATE_RATE_LIMIT = int(os.getenv("QR_CREATE_RATE_LIMIT", "10"))
QR_CREATE_RATE_WINDOW_SECONDS = int(os.getenv("QR_CREATE_RATE_WINDOW_SECONDS", "60"))
AUTH_RATE_LIMIT = int(os.getenv("AUTH_RATE_LIMIT", "5"))
AUTH_RATE_WINDOW_SECONDS = int(os.getenv("AUTH_RATE_WINDOW_SECONDS", "900"))

ENFORCE_QR_QUOTA = os.getenv("ENFORCE_QR_QUOTA", "1") not in ("0", "false", "False")
FREE_PLAN_QR_LIMIT = int(os.getenv("FREE_PLAN_QR_LIMIT", "5"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Quantos proxies reversos (que acrescentam ao X-Forwarded-For) ficam à frente
# da aplicação. 0: o cabeçalho é ignorado e vale o IP da conexão.
TRUSTED_PROXY_HOPS = int(os.getenv("TRUSTED_PROXY_HOPS", "0"))
