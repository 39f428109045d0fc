"""Services that front upstream data sources."""

from ykbuddy.app.services.weather import WeatherService

__all__ = ["WeatherService"]
