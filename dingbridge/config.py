from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    APP_ENV: str = "development"

    # Stream trigger
    DINGTALK_ENABLED: bool = False
    DINGTALK_CLIENT_ID: str = ""
    DINGTALK_CLIENT_SECRET: str = ""
    DINGTALK_AUTO_ACK: bool = True  # ack on receipt to avoid platform redelivery
    DINGTALK_DEDUP_ENABLED: bool = True

    # Where inbound records are POSTed; empty means log only
    DINGTALK_FORWARD_URL: str = ""
    DINGTALK_FORWARD_TIMEOUT: float = 30

    # Reply webhook
    DINGTALK_REPLY_TIMEOUT: float = 30


settings = Settings()
