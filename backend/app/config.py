import os
from decimal import Decimal
from typing import Dict, List

class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _split_pairs(self, raw: str, *, default: Dict[str, str]) -> Dict[str, str]:
        # "ultrashineskin=Ultrashine,bodytancaribbean=Bodytan"
        out: Dict[str, str] = {}
        for part in self._split_csv(raw, default=[]):
            key, sep, value = part.partition("=")
            if sep and key.strip() and value.strip():
                out[key.strip().lower()] = value.strip()
        return out or dict(default)

    def _decimal(self, name: str, default: str) -> Decimal:
        raw = (os.getenv(name) or "").strip()
        try:
            return Decimal(raw or default)
        except Exception:
            return Decimal(default)

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/perla')
        # Comma-separated list of allowed CORS origins for browser clients.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        # Hosted auth service (GoTrue-compatible REST API).
        self.auth_url = (os.getenv("AUTH_URL") or "").strip().rstrip("/")
        self.auth_api_key = (os.getenv("AUTH_API_KEY") or "").strip()

        # Payment gateway.
        self.mp_access_token = (os.getenv("MP_ACCESS_TOKEN") or "").strip()
        self.mp_api_url = (os.getenv("MP_API_URL") or "https://api.mercadopago.com").strip().rstrip("/")
        self.mp_currency_id = (os.getenv("MP_CURRENCY_ID") or "ARS").strip().upper()
        self.mp_statement_descriptor = (os.getenv("MP_STATEMENT_DESCRIPTOR") or "ISABELLA DE LA PERLA").strip()
        self.storefront_url = (os.getenv("STOREFRONT_URL") or "https://www.isabelladelaperla.app").strip().rstrip("/")
        self.payment_webhook_url = (os.getenv("PAYMENT_WEBHOOK_URL") or "").strip()

        # Order notification mail (optional).
        self.resend_api_key = (os.getenv("RESEND_API_KEY") or "").strip()
        self.order_prep_email = (os.getenv("ORDER_PREP_EMAIL") or "").strip()
        self.order_email_from = (os.getenv("ORDER_EMAIL_FROM") or "Ventas Online <onboarding@resend.dev>").strip()

        self.sales_tax_rate = self._decimal("SALES_TAX_RATE", "0.21")
        self.transfer_discount_rate = self._decimal("TRANSFER_DISCOUNT_RATE", "0.05")
        self.low_stock_product_threshold = self._decimal("LOW_STOCK_PRODUCT_THRESHOLD", "50")
        # Storefront host fragment -> store tag recorded on web sales.
        self.store_hosts = self._split_pairs(
            os.getenv("STORE_HOSTS", "").strip(),
            default={"ultrashineskin": "Ultrashine", "bodytancaribbean": "Bodytan"},
        )
        self.default_store = (os.getenv("DEFAULT_STORE") or "Isabella").strip() or "Isabella"

settings = Settings()
