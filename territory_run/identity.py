"""Local participant profile and selected-city records.

Used when no central identity service is configured: the profile is a random
id plus a username, kept in the device key-value store.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict
from typing import Optional, Protocol

from .local_store import KeyValueStore
from .models import City, Participant

PROFILE_KEY = "territoryrun_profile"
CITY_KEY = "territoryrun_city"

LOGGER = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    def current_participant(self) -> Optional[Participant]: ...


class CityProvider(Protocol):
    def selected_city(self) -> Optional[City]: ...


def _load_json(store: KeyValueStore, key: str) -> Optional[dict]:
    raw = store.get(key)
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        LOGGER.warning("Ignoring unreadable local record %s", key)
        return None
    return data if isinstance(data, dict) else None


class LocalProfileStore:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def current_participant(self) -> Optional[Participant]:
        data = _load_json(self._store, PROFILE_KEY)
        if not data or not data.get("id") or not data.get("username"):
            return None
        return Participant(id=str(data["id"]), display_name=str(data["username"]))

    def save(self, participant: Participant) -> None:
        payload = {"id": participant.id, "username": participant.display_name}
        self._store.set(PROFILE_KEY, json.dumps(payload))

    def create(self, username: str) -> Participant:
        name = username.strip()
        if not name:
            raise ValueError("username must not be empty")
        participant = Participant(id=str(uuid.uuid4()), display_name=name)
        self.save(participant)
        return participant

    def get_or_create(self, username: str) -> Participant:
        return self.current_participant() or self.create(username)


class CitySelectionStore:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def selected_city(self) -> Optional[City]:
        data = _load_json(self._store, CITY_KEY)
        if not data or not data.get("id"):
            return None
        try:
            return City(
                id=str(data["id"]),
                name=str(data.get("name") or ""),
                center_lat=_float_or_none(data.get("center_lat")),
                center_lng=_float_or_none(data.get("center_lng")),
                default_zoom=_float_or_none(data.get("default_zoom")),
            )
        except (TypeError, ValueError):
            LOGGER.warning("Ignoring malformed city selection")
            return None

    def select(self, city: City) -> None:
        self._store.set(CITY_KEY, json.dumps(asdict(city)))

    def clear(self) -> None:
        self._store.delete(CITY_KEY)


def _float_or_none(value: object) -> Optional[float]:
    if value is None:
        return None
    return float(value)  # type: ignore[arg-type]


__all__ = [
    "CITY_KEY",
    "PROFILE_KEY",
    "CityProvider",
    "CitySelectionStore",
    "IdentityProvider",
    "LocalProfileStore",
]
