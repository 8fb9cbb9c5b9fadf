import threading
import unittest
from unittest import mock

import requests

from fuelcalc.calculator import TOKEN_HEADER, CalculationJob, HttpCalculatorClient
from fuelcalc.errors import DownstreamError


def _job():
    return CalculationJob(
        combustion_id=7,
        fuel_id=3,
        fuel_volume=10.0,
        heat=50.0,
        molar_mass=16.04,
        density=None,
        is_gas=True,
        molar_volume=22.414,
        callback_url="http://localhost:8080/api/async/update-result",
    )


class HttpCalculatorClientTests(unittest.TestCase):
    def setUp(self):
        self.client = HttpCalculatorClient("http://calc.test/calculate/", timeout=5)

    def test_submit_sends_token_header_and_payload(self):
        response = mock.Mock(ok=True, status_code=202)
        with mock.patch("fuelcalc.calculator.requests.post", return_value=response) as post:
            self.client.submit(_job(), "session-token")

        args, kwargs = post.call_args
        self.assertEqual(args[0], "http://calc.test/calculate/")
        self.assertEqual(kwargs["headers"], {TOKEN_HEADER: "session-token"})
        self.assertEqual(kwargs["timeout"], 5)
        self.assertEqual(kwargs["json"]["fuel_id"], 3)
        self.assertEqual(kwargs["json"]["callback_url"], "http://localhost:8080/api/async/update-result")
        self.assertNotIn("token", kwargs["json"])

    def test_non_success_status_raises(self):
        response = mock.Mock(ok=False, status_code=500, text="boom")
        with mock.patch("fuelcalc.calculator.requests.post", return_value=response):
            with self.assertRaises(DownstreamError) as ctx:
                self.client.submit(_job(), "t")
        self.assertIn("500", ctx.exception.description)

    def test_transport_error_raises(self):
        with mock.patch(
            "fuelcalc.calculator.requests.post", side_effect=requests.ConnectionError("refused")
        ):
            with self.assertRaises(DownstreamError):
                self.client.submit(_job(), "t")
    def test_concurrent_submits_each_post_their_own_job(self):
        threads_count = 6
        barrier = threading.Barrier(threads_count)
        calls, errors = [], []
        calls_lock = threading.Lock()

        def fake_post(url, json, headers, timeout):
            with calls_lock:
                calls.append((json["fuel_id"], headers[TOKEN_HEADER]))
            return mock.Mock(ok=True, status_code=202)

        def submit(fuel_id):
            job = _job()
            job.fuel_id = fuel_id
            barrier.wait()
            try:
                self.client.submit(job, f"token-{fuel_id}")
            except Exception as exc:
                with calls_lock:
                    errors.append(exc)

        with mock.patch("fuelcalc.calculator.requests.post", side_effect=fake_post):
            threads = [
                threading.Thread(target=submit, args=(fuel_id,)) for fuel_id in range(threads_count)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=30)

        self.assertEqual(errors, [])
        self.assertEqual(
            sorted(calls), [(fuel_id, f"token-{fuel_id}") for fuel_id in range(threads_count)]
        )



if __name__ == "__main__":
    unittest.main()
