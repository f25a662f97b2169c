import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Engine configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///puzzle_arc.db')

    # Logging settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    LOG_TO_FILE = os.getenv('LOG_TO_FILE', 'True').lower() == 'true'

    # Correctness oracle settings
    ORACLE_PROVIDER = os.getenv('ORACLE_PROVIDER', 'mock')  # mock, openrouter, local
    ORACLE_TIMEOUT_SECONDS = float(os.getenv('ORACLE_TIMEOUT_SECONDS', 10))
    OPENROUTER_API_KEY = os.getenv('OPENROUTER_API_KEY') or os.getenv('AI_API_KEY')
    OPENROUTER_MODEL = os.getenv('OPENROUTER_MODEL', 'anthropic/claude-sonnet-4.5')
    OPENROUTER_URL = os.getenv('OPENROUTER_URL', 'https://openrouter.ai/api/v1/chat/completions')
    LOCAL_MODEL_URL = os.getenv('LOCAL_MODEL_URL', 'http://localhost:11434')
    LOCAL_MODEL_NAME = os.getenv('LOCAL_MODEL_NAME', 'llama3.2')

    # Celebration assets
    GIPHY_API_KEY = os.getenv('GIPHY_API_KEY')
    CELEBRATION_TIMEOUT_SECONDS = float(os.getenv('CELEBRATION_TIMEOUT_SECONDS', 5))

    # Game settings
    STARTING_HINT_COINS = int(os.getenv('STARTING_HINT_COINS', 10))
    PUZZLE_WEEK_DAYS = int(os.getenv('PUZZLE_WEEK_DAYS', 7))
    ACHIEVEMENT_TIMEZONE = os.getenv('ACHIEVEMENT_TIMEZONE', 'UTC')

    # Duel settings
    DUEL_CHALLENGE_EXPIRY_HOURS = int(os.getenv('DUEL_CHALLENGE_EXPIRY_HOURS', 24))
    DUEL_TIME_LIMIT_HOURS = int(os.getenv('DUEL_TIME_LIMIT_HOURS', 72))

    ORACLE_PROVIDERS = ('mock', 'openrouter', 'local')

    @classmethod
    def get_async_database_url(cls, database_url: str = None) -> str:
        """Convert a plain sqlite URL to its aiosqlite form"""
        database_url = database_url or cls.DATABASE_URL
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        return database_url

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if cls.ORACLE_PROVIDER not in cls.ORACLE_PROVIDERS:
            raise ValueError(f"ORACLE_PROVIDER must be one of {', '.join(cls.ORACLE_PROVIDERS)}")
        if cls.ORACLE_PROVIDER == 'openrouter' and not cls.OPENROUTER_API_KEY:
            raise ValueError("OPENROUTER_API_KEY or AI_API_KEY is required for the openrouter oracle")
        if cls.ORACLE_TIMEOUT_SECONDS <= 0:
            raise ValueError("ORACLE_TIMEOUT_SECONDS must be positive")
        if cls.STARTING_HINT_COINS < 0:
            raise ValueError("STARTING_HINT_COINS cannot be negative")
