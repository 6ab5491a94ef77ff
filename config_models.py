from dataclasses import dataclass
from decimal import Decimal


@dataclass
class AppConfig:
    name: str
    secret_key: str
    currency: str
    default_vat_rate: Decimal
    default_payment_terms: int
    vat_mode: str


@dataclass
class EmailConfig:
    enabled: bool
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    sender: str
