from typing import Dict

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "zklove-core"
    API_V1_STR: str = "/api/v1"

    # Deployment
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Aura rewards
    PROFILE_CREATED_REWARD: int = 100
    MUTUAL_MATCH_REWARD: int = 10

    # Unlock tier costs
    UNLOCK_COST_BASIC: int = 20
    UNLOCK_COST_BIO: int = 40
    UNLOCK_COST_AVATAR: int = 60
    UNLOCK_COST_CONTACT: int = 80

    # Compatibility scoring
    POINTS_PER_SHARED_HOBBY: int = 20
    AGE_OVERLAP_BONUS: int = 10
    MIN_SHARED_HOBBIES: int = 1

    # Attribute bounds
    MAX_HOBBIES: int = 5
    MIN_AGE: int = 18
    MAX_AGE: int = 100

    # Proof generation
    PROOF_TIMEOUT_SECONDS: float = 30.0

    # Ledger
    LEDGER_SIGNING_KEY: str = "zklove-dev-ledger-key-change-in-production"

    # Event channel
    EVENT_QUEUE_SIZE: int = 1000

    class Config:
        case_sensitive = True
        env_file = ".env"
        env_prefix = "ZKLOVE_"

    def unlock_costs(self) -> Dict[str, int]:
        return {
            "basic": self.UNLOCK_COST_BASIC,
            "bio": self.UNLOCK_COST_BIO,
            "avatar": self.UNLOCK_COST_AVATAR,
            "contact": self.UNLOCK_COST_CONTACT,
        }


settings = Settings()
