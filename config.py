"""Configuration management for the Apple Store watch engine."""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 'yes')


@dataclass
class AreaConfig:
    """Reference data for a single Apple retail area."""

    code: str
    title: str
    base_url: str

    # Ordered code -> display title maps
    stores: Dict[str, str] = field(default_factory=dict)
    products: Dict[str, str] = field(default_factory=dict)


@dataclass
class AppConfig:
    """Application-wide configuration."""

    # Persistence
    settings_file: str = os.getenv('SETTINGS_FILE', 'apple_store_watch_settings.json')
    catalog_file: Optional[str] = os.getenv('CATALOG_FILE') or None
    default_area: str = os.getenv('DEFAULT_AREA', 'us')

    # Polling - keep the interval short but respect the storefront's throttling
    tick_interval_seconds: float = float(os.getenv('TICK_INTERVAL_SECONDS', '3'))
    max_concurrent_queries: int = int(os.getenv('MAX_CONCURRENT_QUERIES', '4'))
    query_timeout: float = float(os.getenv('QUERY_TIMEOUT', '10'))
    tick_timeout: float = float(os.getenv('TICK_TIMEOUT', '30'))
    start_paused: bool = _env_flag('START_PAUSED', 'false')

    # Per-item backoff after failed queries
    backoff_base_seconds: float = float(os.getenv('BACKOFF_BASE_SECONDS', '2'))
    backoff_factor: float = float(os.getenv('BACKOFF_FACTOR', '2.0'))
    backoff_max_seconds: float = float(os.getenv('BACKOFF_MAX_SECONDS', '300'))

    # HTTP settings
    user_agent: str = os.getenv('USER_AGENT', 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36')
    notification_timeout: float = float(os.getenv('NOTIFICATION_TIMEOUT', '15'))

    # Alerts
    enable_sound: bool = _env_flag('ENABLE_SOUND', 'true')
    alert_sound_file: Optional[str] = os.getenv('ALERT_SOUND_FILE') or None
    alert_sound_repeat: int = int(os.getenv('ALERT_SOUND_REPEAT', '3'))
    enable_notifications: bool = _env_flag('ENABLE_NOTIFICATIONS', 'true')
    open_browser_on_alert: bool = _env_flag('OPEN_BROWSER_ON_ALERT', 'false')
    default_notify_url: str = os.getenv('DEFAULT_NOTIFY_URL', '')
    notification_group: str = os.getenv('NOTIFICATION_GROUP', 'apple-store-watch')

    # Housekeeping
    memory_log_every_n_ticks: int = int(os.getenv('MEMORY_LOG_EVERY_N_TICKS', '200'))
    log_buffer_lines: int = int(os.getenv('LOG_BUFFER_LINES', '1000'))

    # Texts used for alert and test pushes
    messages: Dict[str, str] = field(default_factory=lambda: {
        "alert_title": "In stock",
        "alert_body": "{product} is available for pickup at {store}",
        "test_title": "In stock (test)",
        "test_body": "This is a test alert, tap the notification to open the linked page",
        "test_url": "https://www.apple.com/shop/bag",
    })


# Bundled sample catalog. Point CATALOG_FILE at a JSON file of the same shape
# to watch other stores or models.
AREA_CONFIGS = {
    "us": AreaConfig(
        code="us",
        title="United States",
        base_url="https://www.apple.com",
        stores={
            "R095": "Apple Fifth Avenue",
            "R401": "Apple Grand Central",
            "R075": "Apple Union Square",
            "R050": "Apple The Grove",
            "R004": "Apple Tysons Corner",
        },
        products={
            "MYMJ3LL/A": "iPhone 16 Pro 128GB Black Titanium",
            "MYMK3LL/A": "iPhone 16 Pro 128GB White Titanium",
            "MYMP3LL/A": "iPhone 16 Pro 256GB Desert Titanium",
            "MYW13LL/A": "iPhone 16 Pro Max 256GB Natural Titanium",
            "MYW23LL/A": "iPhone 16 Pro Max 256GB Desert Titanium",
            "MYDX3LL/A": "iPhone 16 128GB Ultramarine",
        },
    ),

    "hk": AreaConfig(
        code="hk",
        title="Hong Kong",
        base_url="https://www.apple.com/hk-zh",
        stores={
            "R409": "Apple Causeway Bay",
            "R428": "Apple ifc mall",
            "R485": "Apple Festival Walk",
            "R499": "Apple Canton Road",
            "R610": "Apple New Town Plaza",
        },
        products={
            "MYM93ZA/A": "iPhone 16 Pro 128GB Black Titanium",
            "MYMF3ZA/A": "iPhone 16 Pro 256GB Desert Titanium",
            "MYTM3ZA/A": "iPhone 16 Pro Max 256GB Natural Titanium",
            "MYTN3ZA/A": "iPhone 16 Pro Max 256GB Desert Titanium",
        },
    ),

    "cn": AreaConfig(
        code="cn",
        title="China Mainland",
        base_url="https://www.apple.com.cn",
        stores={
            "R448": "Apple Wangfujing",
            "R320": "Apple Sanlitun",
            "R389": "Apple Pudong",
            "R359": "Apple Nanjing East",
            "R577": "Apple Tianhe Road",
        },
        products={
            "MYLQ3CH/A": "iPhone 16 Pro 128GB Black Titanium",
            "MYLU3CH/A": "iPhone 16 Pro 256GB Desert Titanium",
            "MYTP3CH/A": "iPhone 16 Pro Max 256GB Natural Titanium",
            "MYTQ3CH/A": "iPhone 16 Pro Max 256GB Desert Titanium",
        },
    ),

    "jp": AreaConfig(
        code="jp",
        title="Japan",
        base_url="https://www.apple.com/jp",
        stores={
            "R005": "Apple Ginza",
            "R079": "Apple Shibuya",
            "R224": "Apple Omotesando",
            "R718": "Apple Marunouchi",
        },
        products={
            "MYN93J/A": "iPhone 16 Pro 128GB Black Titanium",
            "MYNF3J/A": "iPhone 16 Pro 256GB Desert Titanium",
            "MYWL3J/A": "iPhone 16 Pro Max 256GB Natural Titanium",
        },
    ),
}


# Initialize app configuration
APP_CONFIG = AppConfig()
