"""
Weather worker — mock current conditions and forecasts.

Returns canned data in MCP ``content`` form, so it runs without any API key.

Launch:
    python -m mcp_gateway.servers.weather
"""

import random
from datetime import date, datetime, timedelta

from mcp_gateway.server import ToolHandler, ToolWorker, main

UNITS = ["metric", "imperial", "kelvin"]

_units_param = {
    "type": "string",
    "enum": UNITS,
    "description": "Temperature units (metric=Celsius, imperial=Fahrenheit, kelvin=Kelvin)",
    "default": "metric",
}


def _temp(value: int, units: str) -> str:
    if units == "imperial":
        return f"{value}°F"
    if units == "kelvin":
        return f"{value}K"
    return f"{value}°C"


def _text(text: str) -> dict:
    return {"content": [{"type": "text", "text": text}]}


class CurrentWeatherTool(ToolHandler):
    name = "get_current_weather"
    description = "Get the current weather for a specific location"
    parameters = {
        "location": {
            "type": "string",
            "description": 'The city and country, e.g. "London, UK" or "New York, US"',
        },
        "units": _units_param,
    }
    required = ["location"]

    def handle(self, params: dict) -> dict:
        location = params.get("location")
        if not location:
            raise ValueError("location is required")
        units = params.get("units") or "metric"
        if units not in UNITS:
            raise ValueError(f"Unknown units: {units}")

        temperature = {"metric": 22, "imperial": 72, "kelvin": 295}[units]
        wind = "7 mph" if units == "imperial" else "12 km/h"
        return _text(
            f"Current weather for {location}:\n"
            f"Temperature: {_temp(temperature, units)}\n"
            f"Conditions: Partly cloudy\n"
            f"Humidity: 65%\n"
            f"Wind: {wind}\n"
            f"Pressure: 1013 hPa\n"
            f"Visibility: 10 km\n"
            f"UV Index: 6\n"
            f"Updated: {datetime.now().isoformat(timespec='minutes')}"
        )


class ForecastTool(ToolHandler):
    name = "get_weather_forecast"
    description = "Get weather forecast for a specific location"
    parameters = {
        "location": {
            "type": "string",
            "description": 'The city and country, e.g. "London, UK" or "New York, US"',
        },
        "days": {
            "type": "number",
            "description": "Number of days for forecast (1-5)",
            "default": 3,
            "minimum": 1,
            "maximum": 5,
        },
        "units": _units_param,
    }
    required = ["location"]

    _conditions = ["Sunny", "Partly cloudy", "Cloudy", "Light rain", "Heavy rain"]

    def handle(self, params: dict) -> dict:
        location = params.get("location")
        if not location:
            raise ValueError("location is required")
        # arguments parsed out of model text arrive as strings
        days = max(1, min(5, int(float(params.get("days") or 3))))
        units = params.get("units") or "metric"
        base = {"metric": 20, "imperial": 68, "kelvin": 293}.get(units, 20)
        spread = 5 if units == "imperial" else 3

        lines = [f"Weather forecast for {location} ({days} days):", ""]
        for offset in range(1, days + 1):
            temp = base + random.randint(-5, 4)
            day = date.today() + timedelta(days=offset)
            lines.append(f"{day.strftime('%a %b %d %Y')}:")
            lines.append(
                f"  {_temp(temp, units)} "
                f"(High: {_temp(temp + spread, units)}, Low: {_temp(temp - spread, units)})"
            )
            lines.append(f"  {random.choice(self._conditions)}")
            lines.append("")
        return _text("\n".join(lines))


def build_worker() -> ToolWorker:
    worker = ToolWorker("weather-server")
    worker.register(CurrentWeatherTool())
    worker.register(ForecastTool())
    return worker


if __name__ == "__main__":
    main(build_worker())
