from mealforge.services.adapters.base import ServiceAdapter

__all__ = ["ServiceAdapter"]
