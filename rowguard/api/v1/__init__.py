from rowguard.api.v1 import admin, me, resources

__all__ = ["admin", "me", "resources"]
