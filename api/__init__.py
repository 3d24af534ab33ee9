from api.routes import api_blueprint

__all__ = ["api_blueprint"]
