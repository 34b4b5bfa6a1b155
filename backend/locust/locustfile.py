"""
Locust Load Test Suite

Users are not created here: seed explorers with ids
LOAD_FIRST_USER_ID .. LOAD_FIRST_USER_ID + LOAD_USER_COUNT - 1, a session
and a coupon, then point the run at them. Tokens are signed with the
service's SECRET_KEY.

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Last seats of one session
  locust -f locustfile.py --tags coupons      # One coupon, many redeemers
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests
"""

import itertools
import os
import random

from locust import HttpUser, task, between, tag, events

from settlement.core.security import create_access_token

EXPERIENCE_ID = int(os.environ.get("LOAD_EXPERIENCE_ID", "1"))
SESSION_ID = int(os.environ.get("LOAD_SESSION_ID", "1"))
COUPON_CODE = os.environ.get("LOAD_COUPON_CODE", "LOADTEST")
FIRST_USER_ID = int(os.environ.get("LOAD_FIRST_USER_ID", "1"))
USER_COUNT = int(os.environ.get("LOAD_USER_COUNT", "100"))

_user_ids = itertools.cycle(range(FIRST_USER_ID, FIRST_USER_ID + USER_COUNT))


def next_headers() -> dict:
    token = create_access_token(data={"sub": str(next(_user_ids))})
    return {"Authorization": f"Bearer {token}"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"Session {SESSION_ID} of experience {EXPERIENCE_ID}, coupon {COUPON_CODE}")
    print(f"Explorers {FIRST_USER_ID}..{FIRST_USER_ID + USER_COUNT - 1}")
    print("=" * 60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - many explorers, few seats

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT COALESCE(SUM(guests), 0) FROM bookings
      WHERE session_id = X AND status IN ('PENDING', 'CONFIRMED');
    Should be <= the session capacity
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = next_headers()

    @tag("concurrency")
    @task
    def reserve_last_seats(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"experience_id": EXPERIENCE_ID, "session_id": SESSION_ID, "guests": random.randint(1, 2)},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()  # 409: sold out or already holding a reservation
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class CouponUser(HttpUser):
    """
    TEST 2: Coupon contention - one limited coupon, many bookings

    Run: locust -f locustfile.py --tags coupons -u 50 -r 50 --run-time 30s

    After test, verify:
      SELECT used_count, max_uses FROM coupons WHERE code = 'LOADTEST';
      SELECT COUNT(*) FROM coupon_usages u JOIN coupons c ON c.id = u.coupon_id
      WHERE c.code = 'LOADTEST';
    Both counts must match and never exceed max_uses
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        self.headers = next_headers()
        self.booking_id = None
        resp = self.client.post(
            "/api/v1/bookings/",
            json={"experience_id": EXPERIENCE_ID, "session_id": SESSION_ID, "guests": 1},
            headers=self.headers,
            name="/api/v1/bookings/ [coupon setup]",
        )
        if resp.status_code == 201:
            self.booking_id = resp.json()["id"]

    @tag("coupons")
    @task(3)
    def apply_coupon(self):
        if not self.booking_id:
            return
        with self.client.post(
            f"/api/v1/bookings/{self.booking_id}/coupon",
            json={"code": COUPON_CODE},
            headers=self.headers,
            name="/api/v1/bookings/{id}/coupon",
            catch_response=True,
        ) as resp:
            if resp.status_code in (200, 400, 409):
                resp.success()  # 400: limit reached or already used
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("coupons")
    @task(1)
    def remove_coupon(self):
        if not self.booking_id:
            return
        with self.client.delete(
            f"/api/v1/bookings/{self.booking_id}/coupon",
            headers=self.headers,
            name="/api/v1/bookings/{id}/coupon [remove]",
            catch_response=True,
        ) as resp:
            if resp.status_code in (200, 404, 409):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("coupons")
    @task(1)
    def validate_coupon(self):
        with self.client.post(
            "/api/v1/coupons/validate",
            json={
                "code": COUPON_CODE,
                "experience_id": EXPERIENCE_ID,
                "session_id": SESSION_ID,
                "amount": "100.00",
            },
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code in (200, 400):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = next_headers()

    def _expect(self, resp, *codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_session(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"experience_id": EXPERIENCE_ID, "session_id": 999999, "guests": 1},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, 404)

    @tag("edge")
    @task
    def zero_guests(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"experience_id": EXPERIENCE_ID, "session_id": SESSION_ID, "guests": 0},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, 400, 422)

    @tag("edge")
    @task
    def huge_party(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"experience_id": EXPERIENCE_ID, "session_id": SESSION_ID, "guests": 999999},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, 400, 409, 422)

    @tag("edge")
    @task
    def unsigned_webhook(self):
        with self.client.post(
            "/api/v1/webhooks/stripe",
            data=b'{"type": "payment_intent.succeeded"}',
            catch_response=True,
        ) as resp:
            if resp.status_code == 200 and resp.json().get("received") is False:
                resp.success()
            else:
                resp.failure(f"Unsigned webhook accepted: {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"experience_id": EXPERIENCE_ID, "session_id": SESSION_ID, "guests": 1},
            catch_response=True,
        ) as resp:
            self._expect(resp, 401)
