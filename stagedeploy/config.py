import os
import sys


class Config:
    """Base configuration"""

    DEBUG = False

    # Local scratch space for staged payloads, archives and generated scripts
    TEMP_DIR = os.environ.get('STAGEDEPLOY_TEMP_DIR') or os.path.join(os.getcwd(), '.deploy-temp')

    # Application log (rotating); per-run deployment logs go to each profile's logging.path
    LOG_DIR = os.environ.get('STAGEDEPLOY_LOG_DIR') or os.path.join(os.getcwd(), 'logs')

    # Compression
    SEVEN_ZIP = os.environ.get('STAGEDEPLOY_7Z') or ('7z.exe' if sys.platform == 'win32' else '7z')
    COMPRESSION_TIMEOUT = int(os.environ.get('STAGEDEPLOY_COMPRESSION_TIMEOUT', 300))

    # SSH
    SSH_TIMEOUT = int(os.environ.get('STAGEDEPLOY_SSH_TIMEOUT', 30))

    # Profile file looked up in the working directory when --config is not given
    CONFIG_FILENAME = 'stagedeploy.config.yaml'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def get_config(config_name=None):
    """Resolve a configuration class by name, defaulting to STAGEDEPLOY_ENV."""
    if config_name is None:
        config_name = os.environ.get('STAGEDEPLOY_ENV', 'production')
    return config.get(config_name, config['default'])
