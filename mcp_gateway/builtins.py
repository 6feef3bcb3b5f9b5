"""
Built-in tools that run in-process, without a worker.

They are registered under the ``local`` worker id and dispatched by the
InvocationGateway straight to their handler.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from mcp_gateway.registry import ToolDescriptor, ToolRegistry

logger = logging.getLogger(__name__)

WTTR_URL = "https://wttr.in"


class WeatherTool:
    """Current conditions for a city from the free wttr.in JSON API."""

    name = "get_weather"
    description = "Get current weather information for a specific city using wttr.in API"
    parameters = {
        "type": "object",
        "properties": {
            "city": {
                "type": "string",
                "description": 'The city name to get weather for (e.g., "Toronto", "New York", "London")',
            },
        },
        "required": ["city"],
        "additionalProperties": False,
    }

    def __init__(
        self,
        base_url: str = WTTR_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def __call__(self, arguments: dict[str, Any]) -> str:
        city = arguments.get("city") or arguments.get("location")
        if not city:
            return "Error: a city is required"

        url = f"{self.base_url}/{quote(city)}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, params={"format": "j1"})
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.warning(f"Weather lookup for {city} failed: {e}")
            return f"Error fetching weather data: {e}"
        except ValueError as e:
            return f"Error parsing weather data: {e}"

        try:
            current = data["current_condition"][0]
            area = data["nearest_area"][0]
            result = {
                "location": f"{area['areaName'][0]['value']}, {area['country'][0]['value']}",
                "temperature": f"{current['temp_C']}°C ({current['temp_F']}°F)",
                "condition": current["weatherDesc"][0]["value"],
                "humidity": f"{current['humidity']}%",
                "windSpeed": f"{current['windspeedKmph']} km/h",
                "windDirection": current["winddir16Point"],
                "pressure": f"{current['pressure']} mb",
                "visibility": f"{current['visibility']} km",
                "uvIndex": current["uvIndex"],
                "feelsLike": f"{current['FeelsLikeC']}°C ({current['FeelsLikeF']}°F)",
            }
        except (KeyError, IndexError, TypeError) as e:
            return f"Error parsing weather data: missing {e}"

        return json.dumps(result, indent=2, ensure_ascii=False)


def register_builtin_tools(
    tools: ToolRegistry,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[ToolDescriptor]:
    weather = WeatherTool(transport=transport)
    return [
        tools.register_local(weather.name, weather.description, weather.parameters, weather),
    ]
