"""
Tool Registry and Demo Executors

A tool is anything with an async ``execute(args) -> dict``. The registry maps
tool names to executors plus the descriptive metadata the gateway publishes
(description, category, scope). It is seeded once at startup and only read
afterwards.

The demo executors return canned data. They stand in for real integrations
and can be swapped for them without touching the pipeline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterator, Optional
from uuid import uuid4

from precheck.models import ScopeClass


# ---------------------------------------------------------------------------
# Executor capability
# ---------------------------------------------------------------------------

class ToolExecutor(ABC):
    @abstractmethod
    async def execute(self, args: dict[str, Any]) -> Any:
        ...


class FunctionTool(ToolExecutor):
    """Adapts a plain coroutine function to the executor capability."""

    def __init__(self, fn: Callable[[dict[str, Any]], Awaitable[Any]]):
        self._fn = fn

    async def execute(self, args: dict[str, Any]) -> Any:
        return await self._fn(args)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    executor: ToolExecutor
    description: str = ""
    category: str = ""
    scope: ScopeClass = ScopeClass.NET_EXTERNAL


class ToolRegistry:
    def __init__(self, specs: Optional[list[ToolSpec]] = None):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._specs:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._specs[spec.name] = spec

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._specs.get(name)

    def scope_for(self, name: str) -> Optional[ScopeClass]:
        spec = self._specs.get(name)
        return spec.scope if spec else None

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

    def categories(self) -> dict[str, list[str]]:
        index: dict[str, list[str]] = {}
        for spec in self._specs.values():
            index.setdefault(spec.category, []).append(spec.name)
        return index


# ---------------------------------------------------------------------------
# Demo executors
# ---------------------------------------------------------------------------

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _short_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:9]}"


WEATHER_CONDITIONS = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    61: "Slight rain",
    63: "Moderate rain",
    71: "Slight snow",
    95: "Thunderstorm",
}


def _coordinates(args: dict[str, Any]) -> Optional[tuple[float, float]]:
    try:
        return float(args["latitude"]), float(args["longitude"])
    except (KeyError, TypeError, ValueError):
        return None


def _canned_reading(latitude: float, longitude: float, day: int = 0) -> dict[str, Any]:
    """Deterministic stand-in for a forecast lookup."""
    temperature = round(28.0 - abs(latitude) * 0.35 + (day % 3) * 0.8, 1)
    code = sorted(WEATHER_CONDITIONS)[int(abs(latitude + longitude) + day) % len(WEATHER_CONDITIONS)]
    return {
        "temperature": temperature,
        "humidity": 40 + int(abs(longitude)) % 50,
        "wind_speed": round(5 + abs(latitude - longitude) % 20, 1),
        "weather_code": code,
    }


_MISSING_COORDINATES = {
    "error": "Missing required parameters: latitude and longitude are required",
    "example": 'Use: {"latitude": 52.52, "longitude": 13.41, "location_name": "Berlin"}',
}


async def weather_current(args: dict[str, Any]) -> dict[str, Any]:
    coords = _coordinates(args)
    if coords is None:
        return dict(_MISSING_COORDINATES)
    latitude, longitude = coords
    reading = _canned_reading(latitude, longitude)
    return {
        "location": args.get("location_name") or f"{latitude}, {longitude}",
        "coordinates": {"latitude": latitude, "longitude": longitude},
        "temperature": f"{reading['temperature']}°C",
        "feels_like": f"{round(reading['temperature'] - 1.5, 1)}°C",
        "condition": WEATHER_CONDITIONS[reading["weather_code"]],
        "humidity": f"{reading['humidity']}%",
        "wind_speed": f"{reading['wind_speed']} km/h",
        "weather_code": reading["weather_code"],
        "timestamp": _now(),
        "source": "demo",
    }


async def weather_forecast(args: dict[str, Any]) -> dict[str, Any]:
    coords = _coordinates(args)
    if coords is None:
        return dict(_MISSING_COORDINATES)
    latitude, longitude = coords
    days = max(1, min(int(args.get("days", 3)), 7))
    today = datetime.now(timezone.utc).date()

    forecast = []
    for day in range(days):
        reading = _canned_reading(latitude, longitude, day)
        forecast.append({
            "date": (today + timedelta(days=day)).isoformat(),
            "high_temp": f"{reading['temperature'] + 4}°C",
            "low_temp": f"{reading['temperature'] - 4}°C",
            "condition": WEATHER_CONDITIONS[reading["weather_code"]],
            "wind_speed_max": f"{reading['wind_speed']} km/h",
            "weather_code": reading["weather_code"],
        })

    return {
        "location": args.get("location_name") or f"{latitude}, {longitude}",
        "coordinates": {"latitude": latitude, "longitude": longitude},
        "forecast": forecast,
        "forecast_days": days,
        "source": "demo",
    }


def _amount(args: dict[str, Any]) -> float:
    try:
        return float(args.get("amount") or 0)
    except (TypeError, ValueError):
        return 0.0


async def payment_process(args: dict[str, Any]) -> dict[str, Any]:
    amount = _amount(args)
    return {
        "transaction_id": _short_id("txn"),
        "status": "completed",
        "amount": amount,
        "currency": args.get("currency", "USD"),
        "method": args.get("method", "credit_card"),
        "description": args.get("description") or "Demo payment",
        "timestamp": _now(),
        "fee": round(amount * 0.029, 2),
        "net_amount": round(amount * 0.971, 2),
    }


async def payment_refund(args: dict[str, Any]) -> dict[str, Any]:
    return {
        "refund_id": _short_id("ref"),
        "original_transaction": args.get("transaction_id"),
        "status": "processed",
        "refund_amount": _amount(args),
        "reason": args.get("reason") or "Customer request",
        "timestamp": _now(),
        "estimated_arrival": "3-5 business days",
    }


MOCK_TABLES: dict[str, list[dict[str, Any]]] = {
    "users": [
        {"id": 1, "name": "John Doe", "email": "john@example.com", "created_at": "2024-01-15"},
        {"id": 2, "name": "Jane Smith", "email": "jane@example.com", "created_at": "2024-02-20"},
    ],
    "orders": [
        {"id": 101, "user_id": 1, "amount": 99.99, "status": "completed", "date": "2024-12-01"},
        {"id": 102, "user_id": 2, "amount": 149.50, "status": "pending", "date": "2024-12-15"},
    ],
    "products": [
        {"id": 201, "name": "Premium Plan", "price": 99.99, "category": "subscription"},
    ],
}


async def db_query(args: dict[str, Any]) -> dict[str, Any]:
    table = args.get("table", "users")
    rows = MOCK_TABLES.get(table, [])
    return {
        "query": args.get("query") or f"SELECT * FROM {table}",
        "table": table,
        "results": rows,
        "count": len(rows),
    }


MOCK_FILES: dict[str, str] = {
    "/demo/sample.txt": "This is a sample text file for demonstration purposes.",
    "/config/app.json": '{"name": "Demo App", "version": "1.0.0", "debug": true}',
    "/data/users.csv": "id,name,email\n1,John Doe,john@example.com",
}

MOCK_DIRECTORIES: dict[str, list[dict[str, Any]]] = {
    "/demo": [
        {"name": "sample.txt", "type": "file", "size": 256},
        {"name": "images", "type": "directory", "size": None},
    ],
    "/config": [
        {"name": "app.json", "type": "file", "size": 512},
    ],
}


async def file_read(args: dict[str, Any]) -> dict[str, Any]:
    path = args.get("path") or "/demo/sample.txt"
    content = MOCK_FILES.get(path, f"Mock content for {path}")
    return {"path": path, "content": content, "size": len(content), "encoding": "utf-8"}


async def file_write(args: dict[str, Any]) -> dict[str, Any]:
    content = args.get("content") or ""
    return {
        "path": args.get("path") or "/demo/output.txt",
        "bytes_written": len(content),
        "mode": args.get("mode", "w"),
        "timestamp": _now(),
        "success": True,
    }


async def file_list(args: dict[str, Any]) -> dict[str, Any]:
    path = args.get("path") or "/demo"
    files = MOCK_DIRECTORIES.get(path, [])
    return {"path": path, "files": files, "total": len(files)}


async def web_search(args: dict[str, Any]) -> dict[str, Any]:
    query = args.get("query")
    if not query:
        return {
            "error": "Missing required parameter: query is required",
            "example": 'Use: {"query": "AI governance best practices", "limit": 5}',
        }
    limit = max(1, min(int(args.get("limit", 5)), 10))
    results = [
        {
            "title": f"Result {i + 1} for {query}",
            "url": f"https://example.com/search/{i + 1}",
            "snippet": f"Canned search snippet {i + 1} about {query}.",
        }
        for i in range(limit)
    ]
    return {"query": query, "results": results, "total": len(results), "source": "demo"}


async def web_scrape(args: dict[str, Any]) -> dict[str, Any]:
    url = args.get("url")
    if not url:
        return {
            "error": "Missing required parameter: url is required",
            "example": 'Use: {"url": "https://example.com"}',
        }
    markdown = f"# Page at {url}\n\nCanned page content."
    return {
        "url": url,
        "markdown": markdown,
        "word_count": len(markdown.split()),
        "scraped_at": _now(),
        "source": "demo",
    }


async def email_send(args: dict[str, Any]) -> dict[str, Any]:
    return {
        "message_id": _short_id("msg"),
        "to": args.get("to") or "recipient@example.com",
        "from": args.get("from", "demo@example.com"),
        "subject": args.get("subject") or "Demo Email",
        "status": "sent",
        "timestamp": _now(),
    }


async def calendar_create_event(args: dict[str, Any]) -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    return {
        "event_id": _short_id("evt"),
        "title": args.get("title") or "Demo Meeting",
        "start_time": args.get("start_time") or now.isoformat(),
        "end_time": args.get("end_time") or (now + timedelta(hours=1)).isoformat(),
        "description": args.get("description"),
        "attendees": args.get("attendees", []),
        "status": "confirmed",
    }


MOCK_KV: dict[str, str] = {
    "user_preferences": '{"theme": "dark", "notifications": true}',
    "api_config": '{"timeout": 30000, "retries": 3}',
}


async def kv_get(args: dict[str, Any]) -> dict[str, Any]:
    key = args.get("key") or "default_key"
    return {
        "key": key,
        "value": MOCK_KV.get(key, f"Mock value for {key}"),
        "exists": key in MOCK_KV,
        "ttl": 3600,
    }


async def kv_set(args: dict[str, Any]) -> dict[str, Any]:
    ttl = int(args.get("ttl", 3600))
    return {
        "key": args.get("key") or "new_key",
        "value": args.get("value", ""),
        "success": True,
        "ttl": ttl,
        "expires_at": (datetime.now(timezone.utc) + timedelta(seconds=ttl)).isoformat(),
    }


_EXTERNAL = ScopeClass.NET_EXTERNAL
_INTERNAL = ScopeClass.INTERNAL

DEMO_TOOLS: list[tuple[str, Callable[[dict[str, Any]], Awaitable[Any]], str, str, ScopeClass]] = [
    ("weather_current", weather_current, "Get current weather conditions for coordinates", "weather", _EXTERNAL),
    ("weather_forecast", weather_forecast, "Get a multi-day weather forecast for coordinates", "weather", _EXTERNAL),
    ("payment_process", payment_process, "Process a payment transaction", "payment", _EXTERNAL),
    ("payment_refund", payment_refund, "Process a refund for a transaction", "payment", _EXTERNAL),
    ("db_query", db_query, "Execute database queries on mock tables", "db", _INTERNAL),
    ("file_read", file_read, "Read contents of a file", "file", _INTERNAL),
    ("file_write", file_write, "Write content to a file", "file", _INTERNAL),
    ("file_list", file_list, "List files and directories", "file", _INTERNAL),
    ("web_search", web_search, "Search the web for information", "web", _EXTERNAL),
    ("web_scrape", web_scrape, "Scrape and extract content from a webpage", "web", _EXTERNAL),
    ("email_send", email_send, "Send an email message", "email", _EXTERNAL),
    ("calendar_create_event", calendar_create_event, "Create a calendar event", "calendar", _EXTERNAL),
    ("kv_get", kv_get, "Get value from key-value store", "kv", _INTERNAL),
    ("kv_set", kv_set, "Set value in key-value store", "kv", _INTERNAL),
]


def build_demo_registry() -> ToolRegistry:
    return ToolRegistry([
        ToolSpec(name=name, executor=FunctionTool(fn), description=description,
                 category=category, scope=scope)
        for name, fn, description, category, scope in DEMO_TOOLS
    ])
