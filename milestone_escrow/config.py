from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    env: str = "development"
    log_level: str = "INFO"

    # --- Authority ---
    # Identities allowed to create escrows, complete milestones, release and refund.
    operator_identities: list[str] = ["operator"]

    # Ledger account that holds escrowed funds between fund and release/refund.
    custody_account: str = "escrow-custody"

    # --- Creation limits ---
    milestone_weight_total: int = 100  # Weights are integer percentages of total_amount
    max_title_length: int = 256
    max_milestones: int = 100

    # Query pagination
    max_page_size: int = 100

    # Webhook (empty URL disables delivery)
    webhook_url: str = ""
    webhook_secret: str = ""
    webhook_timeout_seconds: int = 10

    # CORS
    cors_allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def primary_operator(self) -> str:
        return self.operator_identities[0]

    @property
    def webhook_enabled(self) -> bool:
        return bool(self.webhook_url)


settings = Settings()
