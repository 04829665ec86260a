from .riot_client import RawCredentials, RiotLoginBroker

__all__ = ["RawCredentials", "RiotLoginBroker"]
