import os

_base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY', 'a_default_secret_key')
    GOOGLE_API_KEY = os.environ.get('GOOGLE_API_KEY')
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')
    DATA_PATH = os.environ.get('DATA_PATH', os.path.join(_base_dir, 'data', 'fmea-data.json'))
    LLM_CONFIG_PATH = os.environ.get('LLM_CONFIG_PATH', os.path.join(_base_dir, 'data', 'llm-config.json'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'text')
    DEBUG = False
    TESTING = False


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    # Tests never reach the real text-generation service
    GOOGLE_API_KEY = None


class ProductionConfig(Config):
    """Production configuration."""
    # In production DATA_PATH should point at a mounted volume
    DATA_PATH = os.environ.get('DATA_PATH', '/var/lib/fmea/fmea-data.json')


config_by_name = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
