"""
Locust load script for the dispute resolution API.

Simulates realistic party and admin behavior:
- A renter files a dispute against a landlord (POST /disputes)
- Both parties open the ticket and page the transcript with after_seq
- Parties exchange messages through the actions endpoint
- Admins poll the resolution-center queue and resolve escalated tickets

Tokens are minted locally with the API's signing key, so the script needs the
same SECRET_KEY as the target environment (never point it at production).

Configure with env vars or Locust UI:
- HOST: pass via `--host http://localhost:8000`
- DISPUTE_API_PREFIX: API prefix (default /api/v1)
- DISPUTE_PAIRS: number of renter/landlord pairs to spread load over (default 20)
- DISPUTE_TRANSCRIPT_LIMIT: transcript page size (default 50)

Run:
  locust -f load/locustfile.py --host http://localhost:8000
"""

from __future__ import annotations

import logging
import os
import random
import sys
from typing import Dict, List, Optional

from locust import HttpUser, between, events, task

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend")))

from app.api.auth import create_access_token  # noqa: E402


# --- Config -------------------------------------------------------------------

API = os.getenv("DISPUTE_API_PREFIX", "/api/v1").rstrip("/")
PAIRS = int(os.getenv("DISPUTE_PAIRS", "20") or 20)
TRANSCRIPT_LIMIT = int(os.getenv("DISPUTE_TRANSCRIPT_LIMIT", "50") or 50)


# --- Helpers ------------------------------------------------------------------

def _auth_header(user_id: str, admin: bool = False) -> Dict[str, str]:
    token = create_access_token({"sub": user_id, "admin": admin})
    return {"Authorization": f"Bearer {token}"}


def _safe_json(resp):
    try:
        return resp.json()
    except Exception:
        return {}


# --- Party profile ------------------------------------------------------------

class PartyUser(HttpUser):
    weight = 10
    wait_time = between(1, 3)

    def on_start(self):
        pair = random.randint(1, PAIRS)
        self.renter = f"load-renter-{pair}"
        self.landlord = f"load-landlord-{pair}"
        self.renter_headers = _auth_header(self.renter)
        self.landlord_headers = _auth_header(self.landlord)
        self.tickets: List[int] = []
        self.last_seq: Dict[int, int] = {}

    def _pick(self) -> Optional[int]:
        return random.choice(self.tickets) if self.tickets else None

    @task(1)
    def file_dispute(self):
        r = self.client.post(
            f"{API}/disputes",
            json={
                "booking_id": f"booking-{random.randint(1, 10_000)}",
                "property_id": f"property-{random.randint(1, 500)}",
                "accused_id": self.landlord,
                "reporter_role": "renter",
                "title": "Load test dispute",
                "description": "Heating failed during the stay.",
                "claim_amount": "75.00",
            },
            headers=self.renter_headers,
            name="/disputes [file]",
        )
        if r.status_code == 201:
            tid = _safe_json(r).get("id")
            if tid:
                self.tickets.append(int(tid))
                self.last_seq[int(tid)] = 0

    @task(6)
    def read_transcript(self):
        tid = self._pick()
        if tid is None:
            return
        r = self.client.get(
            f"{API}/disputes/{tid}/messages",
            params={"after_seq": self.last_seq.get(tid, 0), "limit": TRANSCRIPT_LIMIT},
            headers=random.choice([self.renter_headers, self.landlord_headers]),
            name="/disputes/{id}/messages",
        )
        if r.status_code != 200:
            return
        items = _safe_json(r) or []
        if items:
            self.last_seq[tid] = int(items[-1]["seq"])

    @task(4)
    def send_message(self):
        tid = self._pick()
        if tid is None:
            return
        headers = random.choice([self.renter_headers, self.landlord_headers])
        with self.client.post(
            f"{API}/disputes/{tid}/actions",
            json={"action": "send_message", "message": "Load test reply"},
            headers=headers,
            name="/disputes/{id}/actions [message]",
            catch_response=True,
        ) as resp:
            # Closed/resolved tickets and lost races are expected under load
            if resp.status_code == 409:
                resp.success()
                if _safe_json(resp).get("detail", {}).get("code") == "invalid_transition":
                    self.tickets.remove(tid)

    @task(2)
    def list_mine(self):
        self.client.get(f"{API}/disputes", headers=self.renter_headers, name="/disputes [mine]")

    @task(1)
    def escalate(self):
        tid = self._pick()
        if tid is None:
            return
        with self.client.post(
            f"{API}/disputes/{tid}/actions",
            json={"action": "escalate"},
            headers=self.renter_headers,
            name="/disputes/{id}/actions [escalate]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 409:
                resp.success()


# --- Admin profile ------------------------------------------------------------

class AdminUser(HttpUser):
    """Works the resolution-center queue. Keep the weight low."""

    weight = 1
    wait_time = between(3, 6)

    def on_start(self):
        self.headers = _auth_header(f"load-admin-{random.randint(1, 3)}", admin=True)

    @task(3)
    def queue(self):
        self.client.get(
            f"{API}/disputes",
            params={"scope": "admin_queue"},
            headers=self.headers,
            name="/disputes [admin_queue]",
        )

    @task(1)
    def resolve_one(self):
        r = self.client.get(
            f"{API}/disputes",
            params={"scope": "admin_queue"},
            headers=self.headers,
            name="/disputes [admin_queue]",
        )
        items = _safe_json(r) or []
        escalated = [d for d in items if d.get("status") == "escalated"]
        if not escalated:
            return
        tid = random.choice(escalated)["id"]
        with self.client.post(
            f"{API}/disputes/{tid}/actions",
            json={"action": "admin_resolve", "resolution": "Resolved during load test"},
            headers=self.headers,
            name="/disputes/{id}/actions [resolve]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 409:
                resp.success()


# --- Optional event hooks -----------------------------------------------------

@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    logging.getLogger("locust").info("Starting dispute load test pairs=%s prefix=%s", PAIRS, API)


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    logging.getLogger("locust").info("Test finished")
