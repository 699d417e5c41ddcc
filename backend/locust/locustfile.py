"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags contention  # Sessions racing for one table
  locust -f locustfile.py --tags browse      # Seat chart reads
  locust -f locustfile.py --tags edge        # Test bad input
  locust -f locustfile.py                    # All tests
"""

import random
from locust import HttpUser, task, between, tag

HOT_TABLE = 1
SEATS_PER_TABLE = 6
TOTAL_TABLES = 14


def hot_seats(k: int) -> list[str]:
    return [f"t{HOT_TABLE}-s{n}" for n in random.sample(range(1, SEATS_PER_TABLE + 1), k)]


def new_session(client) -> dict:
    resp = client.post("/api/v1/sessions")
    if resp.status_code == 201:
        return {"X-Session-Token": resp.json()["session_token"]}
    return {}


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - many sessions -> 6 seats of one table

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    Every 200 on /checkout must be a seat nobody else holds. Afterwards,
    GET /api/v1/seats shows at most one holder per seat; 409s are expected.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = new_session(self.client)

    @tag("contention")
    @task
    def grab_hot_seats(self):
        if not self.headers:
            return

        with self.client.post("/api/v1/checkout",
            json={"seat_ids": hot_seats(random.randint(1, 2))},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 200:
                resp.success()
                # Give the seats back so the race keeps going
                self.client.post("/api/v1/checkout/cancel", json={}, headers=self.headers)
            elif resp.status_code == 409:
                resp.success()  # Expected: lost the race
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class BrowseUser(HttpUser):
    """
    TEST 2: Browse - seat chart reads under write load

    Run: locust -f locustfile.py --tags browse -u 100 -r 20 --run-time 60s
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        self.headers = new_session(self.client)

    @tag("browse", "read")
    @task(10)
    def seat_chart(self):
        self.client.get("/api/v1/seats", headers=self.headers)

    @tag("browse", "read")
    @task(3)
    def single_seat(self):
        table = random.randint(1, TOTAL_TABLES)
        seat = random.randint(1, SEATS_PER_TABLE)
        self.client.get(f"/api/v1/seats/t{table}-s{seat}", name="/api/v1/seats/{id}")

    @tag("browse")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = new_session(self.client)

    @tag("edge")
    @task
    def unknown_seat(self):
        with self.client.post("/api/v1/checkout",
            json={"seat_ids": ["t999-s1"]},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def empty_checkout(self):
        with self.client.post("/api/v1/checkout",
            json={"seat_ids": []},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 422:
                resp.success()
            else:
                resp.failure(f"Expected 422, got {resp.status_code}")

    @tag("edge")
    @task
    def registration_without_hold(self):
        with self.client.post("/api/v1/checkout/registration",
            json={
                "details": {"t14-s6": {"category": "STUDENT", "name": "Load Test", "identifier": "S1"}},
                "ref_no": "ref1",
                "receipt": "data:image/png;base64,AAAA",
            },
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 403:
                resp.success()
            else:
                resp.failure(f"Expected 403, got {resp.status_code}")

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/checkout",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_session(self):
        with self.client.post("/api/v1/checkout",
            json={"seat_ids": ["t2-s1"]},
            catch_response=True
        ) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Mostly browsing, some selection and checkout, a few registrations.
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = new_session(self.client)

    @task(50)
    def browse(self):
        self.client.get("/api/v1/seats", headers=self.headers)

    @task(10)
    def session_state(self):
        if self.headers:
            self.client.get("/api/v1/sessions/me", headers=self.headers)

    @task(10)
    def checkout_and_register(self):
        if not self.headers:
            return
        seat_id = f"t{random.randint(2, TOTAL_TABLES)}-s{random.randint(1, SEATS_PER_TABLE)}"
        resp = self.client.post("/api/v1/checkout", json={"seat_ids": [seat_id]}, headers=self.headers)
        if resp.status_code != 200:
            return
        if random.random() < 0.5:
            self.client.post("/api/v1/checkout/cancel", json={}, headers=self.headers)
            return
        self.client.post("/api/v1/checkout/registration",
            json={
                "details": {seat_id: {"category": "VITROXIAN", "name": "Load Tester", "identifier": "V1234"}},
                "ref_no": f"ref{random.randint(1, 99999)}",
                "receipt": "data:image/png;base64,AAAA",
            },
            headers=self.headers)
