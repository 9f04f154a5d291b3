import os


def _split(value: str) -> list:
    return [part.strip() for part in value.split(',') if part.strip()]


class BaseConfig:
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me')
    GESTIOO_API_URL = os.getenv('GESTIOO_API_URL', 'http://localhost:4000/api')
    GESTIOO_API_TOKEN = os.getenv('GESTIOO_API_TOKEN', '')
    API_TIMEOUT = int(os.getenv('API_TIMEOUT', '15'))

    # Document export
    IMAGE_FETCH_TIMEOUT = float(os.getenv('IMAGE_FETCH_TIMEOUT', '10'))
    IMAGE_FETCH_WORKERS = int(os.getenv('IMAGE_FETCH_WORKERS', '6'))
    IMAGE_PROXY_URL = os.getenv('IMAGE_PROXY_URL', 'https://api.allorigins.win/raw?url={url}')
    BRANDING_LOGO_DIR = os.getenv('BRANDING_LOGO_DIR', '')

    # Visit workbook export
    VISITS_TEMPLATE_CANDIDATES = _split(os.getenv('VISITS_TEMPLATE_CANDIDATES', ''))
    VISITS_TIMEZONE = os.getenv('VISITS_TIMEZONE', 'America/Santiago')
    VISITS_PAGE_SIZE = int(os.getenv('VISITS_PAGE_SIZE', '200'))

    SEARCH_DEBOUNCE_MS = int(os.getenv('SEARCH_DEBOUNCE_MS', '300'))


class DevConfig(BaseConfig):
    DEBUG = True
    ENV = 'development'


class ProdConfig(BaseConfig):
    DEBUG = False
    ENV = 'production'
