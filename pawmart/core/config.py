from decimal import Decimal
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "PawMart"
    ENVIRONMENT: str = "development"

    # Logging: level name, and "json" or "text" (defaults to json in production)
    LOG_LEVEL: Optional[str] = None
    LOG_FORMAT: Optional[str] = None

    # Storage backend: "dynamodb" in deployed environments, "memory" for local runs and tests
    STORAGE_BACKEND: str = "dynamodb"

    # AWS Settings
    AWS_REGION: str = "ap-south-1"
    DYNAMODB_ENDPOINT: Optional[str] = None

    # DynamoDB Tables
    DYNAMODB_PRODUCTS_TABLE: str = "pawmart-products-dev"
    DYNAMODB_CARTS_TABLE: str = "pawmart-carts-dev"
    DYNAMODB_ORDERS_TABLE: str = "pawmart-orders-dev"
    DYNAMODB_USERS_TABLE: str = "pawmart-users-dev"
    DYNAMODB_PENDING_CHECKOUTS_TABLE: str = "pawmart-pending-checkouts-dev"
    DYNAMODB_REFERENCE_KEYS_TABLE: str = "pawmart-reference-keys-dev"

    # Payment gateway (Easebuzz)
    EASEBUZZ_KEY: str = ""
    EASEBUZZ_SALT: str = ""
    EASEBUZZ_BASE_URL: str = "https://testpay.easebuzz.in"
    PAYMENT_CALLBACK_URL: str = "http://localhost:8000/api/v1/payment/callback"
    PAYMENT_GATEWAY_TIMEOUT_SECONDS: float = 15.0
    PENDING_CHECKOUT_TTL_MINUTES: int = 60

    # Frontend redirect target for payment callbacks
    FRONTEND_URL: str = "http://localhost:3000"

    # Email
    USE_AWS_SES: bool = False
    FROM_EMAIL: str = "noreply@fun4pet.com"
    FROM_NAME: str = "Fun4Pet"
    COMPANY_EMAIL: str = "support@fun4pet.com"
    COMPANY_PHONE: str = "+91 00000 00000"
    COMPANY_ADDRESS: str = "India"

    # Pricing
    TAX_RATE: Decimal = Decimal("0.10")
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("100")
    SHIPPING_FEE: Decimal = Decimal("5")

    # Identifiers
    TRACKING_NUMBER_MAX_ATTEMPTS: int = 10

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # JWT
    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
