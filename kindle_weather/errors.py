class WeatherError(Exception):
    """Base class for everything that aborts a generation cycle."""


class ConfigError(WeatherError):
    pass


class FetchError(WeatherError):
    pass


class APIError(WeatherError):
    def __init__(self, status_code: int, message: str = "", error_code: str = ""):
        self.status_code = status_code
        self.error_code = error_code or ""
        self.message = message or ""
        super().__init__(str(self))

    def __str__(self) -> str:
        if not self.error_code:
            return f"{self.status_code} API error: {self.message}"
        return f"{self.status_code} ({self.error_code}) API error: {self.message}"


class DecodeError(WeatherError):
    pass


class TemplateError(WeatherError):
    pass


class RenderError(WeatherError):
    pass
