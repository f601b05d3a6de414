import os
from dotenv import load_dotenv

# Carrega o .env da raiz do projeto
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./cafe.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_TEST = ENV_NORMALIZED == "test"
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

# Auth (JWT)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "CHANGE_ME_SUPER_SECRET")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", str(60 * 24)))

# Estoque: tentativas do compare-and-swap usado em ajustes manuais
STOCK_CAS_RETRIES = int(os.getenv("STOCK_CAS_RETRIES", "5"))
DEFAULT_STOCK_THRESHOLD = int(os.getenv("DEFAULT_STOCK_THRESHOLD", "5"))

# Nome exibido quando o dono do pedido não existe mais
DEFAULT_CUSTOMER_NAME = os.getenv("DEFAULT_CUSTOMER_NAME", "Customer")

# Bootstrap do admin inicial (dev)
DEV_ADMIN_EMAIL = os.getenv("DEV_ADMIN_EMAIL", "admin@cafe.com.br").strip()
DEV_ADMIN_NAME = os.getenv("DEV_ADMIN_NAME", "Admin").strip()
DEV_ADMIN_PASSWORD = os.getenv("DEV_ADMIN_PASSWORD", "").strip()
