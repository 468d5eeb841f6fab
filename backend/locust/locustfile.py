"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Last-seat contention
  locust -f locustfile.py --tags churn        # Reserve/cancel churn
  locust -f locustfile.py --tags throughput   # Cached listing
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests

Identity is sent the way the gateway forwards it (X-User-ID / X-User-Role),
so no login round-trip is needed.
"""

import itertools
import random
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

OPERATOR_HEADERS = {"X-User-ID": "1", "X-User-Role": "ADMIN"}
CONCURRENCY_SEATS = 10

# Shared state
WORKSHOP_IDS = []
CONCURRENCY_TARGET = {}
_customer_ids = itertools.count(10_000)


def customer_headers(customer_id):
    return {"X-User-ID": str(customer_id)}


def workshop_payload(title, capacity, slots=1):
    future = (datetime.now(timezone.utc) + timedelta(days=random.randint(1, 90))).isoformat()
    return {
        "title": title,
        "description": "Load test workshop",
        "date": future,
        "capacity": capacity,
        "slots": [{"start_time": f"{9 + i}:00", "end_time": f"{10 + i}:00"} for i in range(slots)],
    }


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"SETUP: concurrency target has {CONCURRENCY_SEATS} seats in one slot")
    print("=" * 60)


def ensure_concurrency_target(client):
    if CONCURRENCY_TARGET:
        return
    resp = client.post(
        "/api/v1/workshops/",
        json=workshop_payload("Concurrency Test Workshop", CONCURRENCY_SEATS),
        headers=OPERATOR_HEADERS,
    )
    if resp.status_code == 201 and not CONCURRENCY_TARGET:
        data = resp.json()
        CONCURRENCY_TARGET.update(workshop_id=data["id"], slot_id=data["slots"][0]["id"])
        print(f"\n✓ Created workshop {data['id']} with {CONCURRENCY_SEATS} seats\n")


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 users -> 10 seats

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM bookings WHERE slot_id = X AND status <> 'CANCELED';
      SELECT remaining_seats FROM slots WHERE id = X;
    Active bookings should be exactly 10 and remaining_seats 0.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = customer_headers(next(_customer_ids))
        ensure_concurrency_target(self.client)

    @tag("concurrency")
    @task
    def reserve_last_seats(self):
        """All users fight for the same 10 seats."""
        if not CONCURRENCY_TARGET:
            return

        with self.client.post(
            "/api/v1/bookings/",
            json=CONCURRENCY_TARGET,
            headers=self.headers,
            catch_response=True,
            name="/api/v1/bookings/ [contended]",
        ) as resp:
            if resp.status_code in (201, 409):
                # 409: slot full or already booked by this user
                resp.success()
            elif resp.status_code == 503:
                resp.failure("Retries exhausted under contention")
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ChurnUser(HttpUser):
    """
    TEST 2: Reserve then cancel in a loop on a small slot.

    Run: locust -f locustfile.py --tags churn -u 50 -r 10 --run-time 60s

    remaining_seats must still equal capacity minus active bookings afterwards.
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        self.headers = customer_headers(next(_customer_ids))
        self.booking_id = None
        ensure_concurrency_target(self.client)

    @tag("churn")
    @task
    def reserve_or_cancel(self):
        if not CONCURRENCY_TARGET:
            return

        if self.booking_id is None:
            resp = self.client.post("/api/v1/bookings/", json=CONCURRENCY_TARGET, headers=self.headers)
            if resp.status_code == 201:
                self.booking_id = resp.json()["id"]
        else:
            with self.client.put(
                f"/api/v1/bookings/me/{self.booking_id}/cancel",
                headers=self.headers,
                catch_response=True,
                name="/api/v1/bookings/me/{id}/cancel",
            ) as resp:
                if resp.status_code == 200:
                    resp.success()
                else:
                    resp.failure(f"Unexpected: {resp.status_code}")
            self.booking_id = None


class ThroughputUser(HttpUser):
    """
    TEST 3: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again

    Compare avg response time, requests/sec and P95/P99 latency.
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_workshops_cached(self):
        page = random.randint(1, 5)
        resp = self.client.get(
            f"/api/v1/workshops/?page={page}&page_size=20",
            name="/api/v1/workshops/ [cached]",
        )
        if resp.status_code == 200:
            for workshop in resp.json().get("workshops", []):
                if workshop["id"] not in WORKSHOP_IDS:
                    WORKSHOP_IDS.append(workshop["id"])

    @tag("throughput", "read")
    @task(3)
    def get_workshop_detail(self):
        if WORKSHOP_IDS:
            self.client.get(f"/api/v1/workshops/{random.choice(WORKSHOP_IDS)}", name="/api/v1/workshops/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 4: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = customer_headers(next(_customer_ids))

    def _expect(self, resp, allowed):
        if resp.status_code in allowed:
            resp.success()
        else:
            resp.failure(f"Expected {allowed}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_slot(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"workshop_id": 1, "slot_id": 999999},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, (404,))

    @tag("edge")
    @task
    def mismatched_slot(self):
        if not CONCURRENCY_TARGET:
            return
        with self.client.post(
            "/api/v1/bookings/",
            json={"workshop_id": CONCURRENCY_TARGET["workshop_id"] + 999999, "slot_id": CONCURRENCY_TARGET["slot_id"]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            # Duplicate beats mismatch when this user already holds a seat
            self._expect(resp, (400, 409))

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, (400, 422))

    @tag("edge")
    @task
    def missing_identity(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"workshop_id": 1, "slot_id": 1},
            catch_response=True,
        ) as resp:
            self._expect(resp, (401,))

    @tag("edge")
    @task
    def customer_status_change(self):
        with self.client.put(
            "/api/v1/bookings/1/status",
            json={"status": "CONFIRMED"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, (403,))


class RealisticUser(HttpUser):
    """
    TEST 5: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Mostly browsing, some reservations and cancellations, rare operator creates.
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = customer_headers(next(_customer_ids))
        self.bookings = []

    @task(50)
    def browse_workshops(self):
        resp = self.client.get("/api/v1/workshops/?page=1&page_size=20")
        if resp.status_code == 200:
            for workshop in resp.json().get("workshops", []):
                if workshop["id"] not in WORKSHOP_IDS:
                    WORKSHOP_IDS.append(workshop["id"])

    @task(20)
    def view_workshop(self):
        if WORKSHOP_IDS:
            self.client.get(f"/api/v1/workshops/{random.choice(WORKSHOP_IDS)}", name="/api/v1/workshops/{id}")

    @task(10)
    def reserve(self):
        if not WORKSHOP_IDS:
            return
        resp = self.client.get(f"/api/v1/workshops/{random.choice(WORKSHOP_IDS)}", name="/api/v1/workshops/{id}")
        if resp.status_code != 200 or not resp.json()["slots"]:
            return
        workshop = resp.json()
        slot = random.choice(workshop["slots"])
        with self.client.post(
            "/api/v1/bookings/",
            json={"workshop_id": workshop["id"], "slot_id": slot["id"]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                self.bookings.append(resp.json()["id"])
                resp.success()
            elif resp.status_code in (404, 409):
                resp.success()

    @task(4)
    def cancel(self):
        if self.bookings:
            booking_id = self.bookings.pop(random.randrange(len(self.bookings)))
            self.client.put(
                f"/api/v1/bookings/me/{booking_id}/cancel",
                headers=self.headers,
                name="/api/v1/bookings/me/{id}/cancel",
            )

    @task(3)
    def create_workshop(self):
        resp = self.client.post(
            "/api/v1/workshops/",
            json=workshop_payload(f"Workshop {random.randint(1, 10000)}", random.randint(5, 50), slots=3),
            headers=OPERATOR_HEADERS,
        )
        if resp.status_code == 201:
            WORKSHOP_IDS.append(resp.json()["id"])
