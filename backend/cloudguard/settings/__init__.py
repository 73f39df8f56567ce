from .routes import settings_bp

__all__ = ["settings_bp"]
