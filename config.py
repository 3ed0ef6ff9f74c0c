import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    DATABASE_URL = os.getenv("DATABASE_URL")
    DATABASE_NAME = os.getenv("DATABASE_NAME")

    SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))

    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd")
    COD_DELAY_SECONDS = float(os.getenv("COD_DELAY_SECONDS", 1.0))

    STORAGE_PATH = os.getenv("STORAGE_PATH", "./var/storage.json")

    GEOCODE_URL = os.getenv("GEOCODE_URL", "https://api.bigdatacloud.net/data/reverse-geocode-client")
    GEOCODE_TIMEOUT = float(os.getenv("GEOCODE_TIMEOUT", 10))

    DEFAULT_COUNTRY = os.getenv("DEFAULT_COUNTRY", "India")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv("LOG_FORMAT", '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    LOG_FILE = os.getenv("LOG_FILE")


config = Config()
