"""
Watts Home resource API client.

Thin, typed-by-convention wrappers over `RequestExecutor`: each method names
the endpoint and payload, the executor owns auth, retries and the response
envelope. Device reads go through a short-TTL cache; device writes update it
with the document the API returns.
"""

from __future__ import annotations

from typing import Any, Optional

from .device_cache import DeviceStatusCache
from .executor import RequestExecutor, RequestSpec

DEVICE_MODES = ("Off", "Heat", "Cool", "Auto")
FAN_MODES = ("Auto", "On")


class WattsApiClient:
    def __init__(self, executor: RequestExecutor, cache: Optional[DeviceStatusCache] = None) -> None:
        self._executor = executor
        self._cache = cache if cache is not None else DeviceStatusCache(self._fetch_device)

    @property
    def cache(self) -> DeviceStatusCache:
        return self._cache

    async def _request(self, method: str, path: str, payload: Any = None) -> Any:
        return await self._executor.request(RequestSpec(method=method, path=path, json=payload))

    # --- user / locations ---

    async def get_user(self) -> dict:
        return await self._request("GET", "/User")

    async def get_locations(self) -> list:
        return await self._request("GET", "/Location")

    async def get_location_devices(self, location_id: str) -> list:
        return await self._request("GET", f"/Location/{location_id}/Devices")

    async def set_location_away_mode(self, location_id: str, away: bool) -> dict:
        return await self._request("PATCH", f"/Location/{location_id}/State", {"awayState": 1 if away else 0})

    # --- devices ---

    async def _fetch_device(self, device_id: str) -> dict:
        return await self._request("GET", f"/Device/{device_id}")

    async def get_device(self, device_id: str) -> dict:
        """Device document incl. `data` (sensors, mode, targets, schedule)."""
        return await self._cache.get(device_id)

    async def update_device(self, device_id: str, settings: dict) -> dict:
        return await self._cache.write(
            device_id,
            self._request("PATCH", f"/Device/{device_id}", {"Settings": settings}),
        )

    async def set_device_heat_temp(self, device_id: str, temperature: float) -> dict:
        return await self.update_device(device_id, {"Heat": temperature})

    async def set_device_cool_temp(self, device_id: str, temperature: float) -> dict:
        return await self.update_device(device_id, {"Cool": temperature})

    async def set_device_auto_temps(self, device_id: str, heat_temp: float, cool_temp: float) -> dict:
        # No deadband check here; the device enforces its own TempInterlock.
        return await self.update_device(device_id, {"Heat": heat_temp, "Cool": cool_temp})

    async def set_device_mode(self, device_id: str, mode: str) -> dict:
        if mode not in DEVICE_MODES:
            raise ValueError(f"Invalid mode {mode!r}. Must be one of: {', '.join(DEVICE_MODES)}")
        return await self.update_device(device_id, {"Mode": mode})

    async def set_device_fan(self, device_id: str, fan: str) -> dict:
        if fan not in FAN_MODES:
            raise ValueError(f"Invalid fan mode {fan!r}. Must be one of: {', '.join(FAN_MODES)}")
        return await self.update_device(device_id, {"Fan": fan})

    async def _current_floor(self, device_id: str) -> dict:
        device = await self.get_device(device_id)
        floor = (((device or {}).get("data") or {}).get("Schedule") or {}).get("Floor") or {}
        return {"W": floor.get("W", 0), "A": floor.get("A", 0)}

    async def set_device_floor_min(self, device_id: str, temperature: float) -> dict:
        """Set the floor minimum (`Schedule.Floor.W`), keeping the away value."""
        floor = await self._current_floor(device_id)
        return await self.update_device(device_id, {"Schedule": {"Floor": {"W": temperature, "A": floor["A"]}}})

    async def set_device_away_temp(self, device_id: str, temperature: Optional[float]) -> dict:
        """Set the floor away temperature (`Schedule.Floor.A`); None or 0 unsets it."""
        away = temperature if temperature else 0
        floor = await self._current_floor(device_id)
        return await self.update_device(device_id, {"Schedule": {"Floor": {"W": floor["W"], "A": away}}})


__all__ = ["DEVICE_MODES", "FAN_MODES", "WattsApiClient"]
