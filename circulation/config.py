from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import Optional
from pathlib import Path
from urllib.parse import quote_plus

# Get the project directory (parent of circulation package)
BACKEND_DIR = Path(__file__).parent.parent
ENV_FILE = BACKEND_DIR / ".env"

class Settings(BaseSettings):
    # Server settings (non-confidential, can have defaults)
    host: str = "0.0.0.0"
    port: int = 3000
    timezone: str = "UTC"  # Display timezone; timestamps are stored in UTC

    # Database settings - either a full URL or the PostgreSQL parts below
    database_url: Optional[str] = None  # e.g. sqlite:///./circulation.db
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "library"
    db_user: str = "library"
    db_password: str = ""  # Confidential, from .env
    db_ssl_mode: str = "prefer"  # Options: disable, allow, prefer, require, verify-ca, verify-full

    # JWT settings - confidential values from .env
    jwt_secret_key: str  # Required from .env (confidential - no default)
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 1440

    # Seconds to wait on the database (connect / lock wait) before giving up
    collaborator_timeout_seconds: float = 10.0

    # Loan policy
    standard_loan_period_days: int = 14
    max_loan_period_days: int = 30  # Upper bound for custom due dates, counted from now
    max_renewals: int = 2
    renewal_overdue_grace_days: int = 3  # Overdue loans may still be renewed within this window
    renewal_blocked_by_fines: bool = True
    max_active_loans_per_member: int = 5

    # Fine policy
    damaged_fine_amount: Decimal = Decimal("10.00")
    lost_fine_amount: Decimal = Decimal("30.00")
    overdue_daily_rate: Decimal = Decimal("0.50")
    overdue_fine_cap: Decimal = Decimal("25.00")

    class Config:
        env_file = str(ENV_FILE) if ENV_FILE.exists() else ".env"
        case_sensitive = False

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        db_user = quote_plus(self.db_user)
        db_password = quote_plus(self.db_password)
        return f"postgresql://{db_user}:{db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

settings = Settings()
