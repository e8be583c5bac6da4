# --------------------------------------------------------------------------
# Langgol - Client Session, Demo Meter & History Sync
# --------------------------------------------------------------------------
# Holds what the browser app kept in localStorage/cookies: the current-user
# snapshot and the anonymous demo usage counter. Persistence goes through a
# SessionStorage port; time comes from an injected clock.
# --------------------------------------------------------------------------

import os
import copy
import json
import time
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_URL = os.getenv("LANGGOL_API_URL", "http://127.0.0.1:8000")

CURRENT_USER_KEY = "langgol-currentUser"
DEMO_USER_KEY = "langgol-demoUser"
DEMO_RECORD_MAX_AGE = 30 * 24 * 60 * 60  # 30 days

Clock = Callable[[], float]


def empty_history() -> dict:
    return {"chat": [], "live": [], "image": []}

# --------------------------------------------------------------------------
# DEMO QUOTA
# --------------------------------------------------------------------------

class DemoExpired(Exception):
    """The demo quota is used up; the visitor has to sign up."""


@dataclass(frozen=True)
class DemoLimits:
    requests: int = 5
    talk_time: int = 120  # seconds


@dataclass
class DemoUsage:
    requests: int = 0
    talk_time: int = 0

    def exhausted(self, limits: DemoLimits) -> bool:
        return self.requests >= limits.requests or self.talk_time >= limits.talk_time

    def remaining(self, limits: DemoLimits) -> "DemoUsage":
        return DemoUsage(
            requests=max(limits.requests - self.requests, 0),
            talk_time=max(limits.talk_time - self.talk_time, 0),
        )

    def to_json(self) -> dict:
        return {"requests": self.requests, "talkTime": self.talk_time}

    @classmethod
    def from_json(cls, data: dict) -> "DemoUsage":
        return cls(requests=int(data.get("requests", 0)), talk_time=int(data.get("talkTime", 0)))


class MeterState(Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    EXPIRED = "expired"

# --------------------------------------------------------------------------
# STORAGE PORTS
# --------------------------------------------------------------------------

class SessionStorage:
    """Key/value store for client state that must survive a reload."""

    def get(self, key: str) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any, max_age: Optional[float] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(SessionStorage):

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._items: dict = {}

    def get(self, key: str) -> Any:
        item = self._items.get(key)
        if item is None:
            return None
        expires = item.get("expires")
        if expires is not None and self._clock() >= expires:
            self.delete(key)
            return None
        return copy.deepcopy(item["value"])

    def set(self, key: str, value: Any, max_age: Optional[float] = None) -> None:
        expires = self._clock() + max_age if max_age is not None else None
        self._items[key] = {"value": copy.deepcopy(value), "expires": expires}

    def delete(self, key: str) -> None:
        self._items.pop(key, None)


class FileStorage(MemoryStorage):
    """JSON file backed storage, the equivalent of browser cookies/localStorage."""

    def __init__(self, path: str, clock: Clock = time.time):
        super().__init__(clock)
        self.path = path
        if os.path.exists(path):
            with open(path, encoding="utf-8") as f:
                try:
                    self._items = json.load(f)
                except json.JSONDecodeError as e:
                    logger.error("Session file %s is unreadable, starting empty: %s", path, e)
                    self._items = {}

    def _flush(self) -> None:
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._items, f, ensure_ascii=False)
        os.replace(tmp_path, self.path)

    def set(self, key: str, value: Any, max_age: Optional[float] = None) -> None:
        super().set(key, value, max_age)
        self._flush()

    def delete(self, key: str) -> None:
        if key in self._items:
            super().delete(key)
            self._flush()

# --------------------------------------------------------------------------
# DEMO SESSION METER
# --------------------------------------------------------------------------

class DemoSessionMeter:

    def __init__(self, storage: SessionStorage, limits: DemoLimits = DemoLimits(),
                 clock: Clock = time.time, on_expired: Optional[Callable[[DemoUsage], None]] = None):
        self.storage = storage
        self.limits = limits
        self._clock = clock
        self._on_expired = on_expired
        self._last_tick: Optional[float] = None
        self.state = MeterState.INACTIVE

    @property
    def usage(self) -> DemoUsage:
        stored = self.storage.get(DEMO_USER_KEY)
        return DemoUsage.from_json(stored) if stored else DemoUsage()

    def start(self) -> DemoUsage:
        stored = self.storage.get(DEMO_USER_KEY)
        if stored is not None and DemoUsage.from_json(stored).exhausted(self.limits):
            self.state = MeterState.EXPIRED
            raise DemoExpired("Demo usage limit reached. Please sign up.")

        usage = DemoUsage()
        self.storage.set(DEMO_USER_KEY, usage.to_json(), max_age=DEMO_RECORD_MAX_AGE)
        self.state = MeterState.ACTIVE
        self._last_tick = self._clock()
        logger.debug("Demo session started")
        return usage

    def resume(self) -> Optional[DemoUsage]:
        """Pick up a demo session persisted before a reload, keeping its counters."""
        stored = self.storage.get(DEMO_USER_KEY)
        if stored is None:
            self.state = MeterState.INACTIVE
            self._last_tick = None
            return None

        usage = DemoUsage.from_json(stored)
        if usage.exhausted(self.limits):
            self.state = MeterState.EXPIRED
            self._last_tick = None
        else:
            self.state = MeterState.ACTIVE
            self._last_tick = self._clock()
        return usage

    def record_usage(self, requests: int = 0, talk_time: int = 0) -> MeterState:
        if self.state is not MeterState.ACTIVE:
            return self.state
        stored = self.storage.get(DEMO_USER_KEY)
        if stored is None:
            # record expired or was erased behind our back
            self.state = MeterState.INACTIVE
            self._last_tick = None
            return self.state

        usage = DemoUsage.from_json(stored)
        usage.requests += requests
        usage.talk_time += talk_time
        self.storage.set(DEMO_USER_KEY, usage.to_json(), max_age=DEMO_RECORD_MAX_AGE)

        if usage.exhausted(self.limits):
            self.state = MeterState.EXPIRED
            self._last_tick = None
            logger.info("Demo quota exhausted: %d requests, %d seconds", usage.requests, usage.talk_time)
            if self._on_expired:
                self._on_expired(usage)
        return self.state

    def tick(self, visible: bool = True) -> MeterState:
        """Accrue talk time for each whole second elapsed while the surface is visible."""
        if self.state is not MeterState.ACTIVE:
            return self.state
        if not visible:
            self._last_tick = None
            return self.state
        now = self._clock()
        if self._last_tick is None:
            self._last_tick = now
            return self.state

        elapsed = int(now - self._last_tick)
        self._last_tick += elapsed
        for _ in range(elapsed):
            if self.record_usage(0, 1) is not MeterState.ACTIVE:
                break
        return self.state

    def stop(self) -> None:
        self.state = MeterState.INACTIVE
        self._last_tick = None
        self.storage.delete(DEMO_USER_KEY)

# --------------------------------------------------------------------------
# API CLIENT
# --------------------------------------------------------------------------

class ApiClient:

    def __init__(self, base_url: Optional[str] = None, http: Optional[httpx.Client] = None, timeout: float = 10.0):
        self._http = http or httpx.Client(base_url=base_url or DEFAULT_API_URL, timeout=timeout)

    def close(self):
        self._http.close()

    def login(self, email: str, password: str) -> dict:
        response = self._http.post("/login", json={"email": email, "pass": password})
        return response.json()

    def signup(self, details: dict) -> dict:
        response = self._http.post("/signup", json=details)
        return response.json()

    def verify_account(self, email: str, code: str) -> bool:
        response = self._http.post("/verify", json={"email": email, "code": code})
        return bool(response.json().get("success"))

    def resend_verification(self, email: str) -> dict:
        response = self._http.post("/resend-verification", json={"email": email})
        return response.json()

    def request_password_reset(self, email: str) -> Optional[dict]:
        response = self._http.post("/request-password-reset", json={"email": email})
        if response.is_success:
            return response.json()
        return None

    def complete_password_reset(self, email: str, answer: str, new_password: str) -> bool:
        response = self._http.post(
            "/complete-password-reset",
            json={"email": email, "answer": answer, "newPass": new_password},
        )
        return bool(response.json().get("success"))

    def get_all_users(self) -> list:
        response = self._http.get("/users")
        response.raise_for_status()
        return response.json()

    def update_user(self, email: str, data: dict) -> dict:
        response = self._http.put(f"/users/{quote(email, safe='@')}", json=data)
        return response.json()

    def get_history(self, email: str) -> Optional[dict]:
        response = self._http.get(f"/history/{quote(email, safe='@')}")
        response.raise_for_status()
        return response.json()

    def save_history(self, email: str, history: dict) -> dict:
        response = self._http.post("/history", json={"email": email, "history": history})
        response.raise_for_status()
        return response.json()

    def logout(self) -> None:
        self._http.post("/logout")

# --------------------------------------------------------------------------
# CLIENT SESSION
# --------------------------------------------------------------------------

class ClientSession:
    """Current user, demo flag and demo usage, persisted through a storage port."""

    def __init__(self, api: ApiClient, storage: SessionStorage,
                 limits: DemoLimits = DemoLimits(), clock: Clock = time.time):
        self.api = api
        self.storage = storage
        self.user: Optional[dict] = None
        self.is_demo_user = False
        self.demo_expired = False
        self.meter = DemoSessionMeter(storage, limits, clock, on_expired=self._end_demo)

    @property
    def demo_usage(self) -> DemoUsage:
        return self.meter.usage

    def restore(self) -> Optional[dict]:
        stored = self.storage.get(CURRENT_USER_KEY)
        if stored:
            self.user = stored
            self.is_demo_user = False
            return self.user

        usage = self.meter.resume()
        if usage is None:
            return self.user
        if self.meter.state is MeterState.EXPIRED:
            self.demo_expired = True
        else:
            self.user = {"name": "Demo User", "isDemo": True}
            self.is_demo_user = True
            self.demo_expired = False
        return self.user

    def login(self, email: str, password: str) -> dict:
        result = self.api.login(email, password)
        if result.get("success") and result.get("user"):
            self.user = result["user"]
            self.is_demo_user = False
            self.storage.set(CURRENT_USER_KEY, self.user)
            self.meter.stop()
        return result

    def login_as_demo(self) -> DemoUsage:
        if self.is_demo_user and self.meter.state is MeterState.ACTIVE:
            return self.meter.usage
        try:
            usage = self.meter.start()
        except DemoExpired:
            self.demo_expired = True
            raise
        self.user = {"name": "Demo User", "isDemo": True}
        self.is_demo_user = True
        self.demo_expired = False
        self.storage.delete(CURRENT_USER_KEY)
        return usage

    def update_demo_usage(self, requests: int = 0, talk_time: int = 0) -> MeterState:
        return self.meter.record_usage(requests, talk_time)

    def tick(self, visible: bool = True) -> MeterState:
        return self.meter.tick(visible)

    def _end_demo(self, usage: DemoUsage) -> None:
        self.demo_expired = True
        self.user = None
        self.is_demo_user = False

    def signup(self, email: str, password: str, name: str, phone: str, address: str,
               security_question: str, security_answer: str) -> dict:
        return self.api.signup({
            "email": email,
            "password": password,
            "name": name,
            "phone": phone,
            "address": address,
            "securityQuestion": security_question,
            "securityAnswer": security_answer,
        })

    def verify_account(self, email: str, code: str) -> bool:
        return self.api.verify_account(email, code)

    def request_password_reset(self, email: str) -> Optional[dict]:
        return self.api.request_password_reset(email)

    def complete_password_reset(self, email: str, answer: str, new_password: str) -> bool:
        return self.api.complete_password_reset(email, answer, new_password)

    def get_all_users(self) -> list:
        return self.api.get_all_users()

    def update_user(self, email: str, name: str, phone: str, address: str) -> dict:
        result = self.api.update_user(email, {"name": name, "phone": phone, "address": address})
        if result.get("success") and result.get("user"):
            self.user = result["user"]
            self.storage.set(CURRENT_USER_KEY, self.user)
        return result

    def logout(self) -> None:
        if self.user and not self.is_demo_user:
            self.api.logout()
        self.user = None
        self.is_demo_user = False
        self.storage.delete(CURRENT_USER_KEY)
        self.meter.stop()

    def history(self) -> "HistorySync":
        return HistorySync(self)

# --------------------------------------------------------------------------
# HISTORY SYNC
# --------------------------------------------------------------------------

class HistorySync:
    """Local history cache; every change is saved to the server as a whole."""

    def __init__(self, session: ClientSession):
        self._session = session
        self.history = empty_history()

    @property
    def _email(self) -> Optional[str]:
        user = self._session.user
        return user.get("email") if user else None

    def load(self) -> dict:
        email = self._email
        if email:
            self.history = self._session.api.get_history(email) or empty_history()
        return self.history

    def update(self, updater) -> dict:
        email = self._email
        if not email:
            return self.history
        new_history = updater(copy.deepcopy(self.history)) if callable(updater) else updater
        self._session.api.save_history(email, new_history)
        self.history = new_history
        return new_history
