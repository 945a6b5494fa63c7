from dadgpt.api.rest import create_app

__all__ = ["create_app"]
