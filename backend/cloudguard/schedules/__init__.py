from .routes import schedules_bp

__all__ = ["schedules_bp"]
