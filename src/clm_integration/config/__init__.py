from .settings import DatabaseSettings, EtlSettings, IntegrationSettings, Settings, load_settings

__all__ = ["DatabaseSettings", "EtlSettings", "IntegrationSettings", "Settings", "load_settings"]
