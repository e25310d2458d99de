import threading
import unittest

from core.exceptions import ReservationRejected
from core.resource_manager import ResourceManager
from core.types import ResourceLimits, ResourceUsage


class TestResourceManager(unittest.TestCase):

    def setUp(self):
        self.rm = ResourceManager(ResourceLimits(cpu_percent=100, memory_mb=1000,
                                                 network_mbps=10, storage_mb=100))

    def test_reserve_within_limits(self):
        r = self.rm.reserve(ResourceUsage(cpu_percent=40, memory_mb=500))
        state = self.rm.get_state()
        self.assertEqual(state.current.cpu_percent, 40)
        self.assertEqual(state.active_reservations, 1)
        self.assertEqual(r.usage.memory_mb, 500)

    def test_reservation_exactly_at_limit_is_granted(self):
        self.rm.reserve(ResourceUsage(memory_mb=1000))
        self.assertFalse(self.rm.check_availability())

    def test_reservation_over_any_dimension_is_rejected(self):
        self.rm.reserve(ResourceUsage(network_mbps=8))
        with self.assertRaises(ReservationRejected) as ctx:
            self.rm.reserve(ResourceUsage(network_mbps=3))
        self.assertEqual(ctx.exception.dimension, "network_mbps")
        # Rejected request leaves the aggregate untouched.
        self.assertEqual(self.rm.get_state().current.network_mbps, 8)

    def test_try_reserve_returns_none_on_rejection(self):
        self.assertIsNone(self.rm.try_reserve(ResourceUsage(storage_mb=101)))
        self.assertIsNotNone(self.rm.try_reserve(ResourceUsage(storage_mb=1)))

    def test_release_returns_capacity_and_records_measured_usage(self):
        r = self.rm.reserve(ResourceUsage(cpu_percent=90))
        self.rm.release(r, ResourceUsage(cpu_percent=30))
        state = self.rm.get_state()
        self.assertEqual(state.current.cpu_percent, 0)
        self.assertEqual(state.measured_total.cpu_percent, 30)
        self.assertEqual(state.active_reservations, 0)
        self.assertIsNotNone(self.rm.try_reserve(ResourceUsage(cpu_percent=90)))

    def test_release_is_idempotent(self):
        r = self.rm.reserve(ResourceUsage(cpu_percent=50))
        self.rm.release(r)
        self.rm.release(r)
        state = self.rm.get_state()
        self.assertEqual(state.current.cpu_percent, 0)
        self.assertEqual(state.measured_total.cpu_percent, 50)

    def test_non_finite_or_negative_estimates_are_rejected(self):
        for bad in (ResourceUsage(cpu_percent=float("nan")),
                    ResourceUsage(memory_mb=float("inf")),
                    ResourceUsage(storage_mb=-5)):
            with self.assertRaises(ReservationRejected):
                self.rm.reserve(bad)
        self.assertEqual(self.rm.get_state().current, ResourceUsage())
        self.assertEqual(self.rm.get_state().active_reservations, 0)
        # Gating still holds afterwards.
        self.assertIsNone(self.rm.try_reserve(ResourceUsage(cpu_percent=10_000)))

    def test_invalid_measured_usage_records_the_estimate(self):
        r = self.rm.reserve(ResourceUsage(cpu_percent=20))
        self.rm.release(r, ResourceUsage(cpu_percent=float("nan")))
        self.assertEqual(self.rm.get_state().measured_total.cpu_percent, 20)

    def test_state_is_a_copy(self):
        state = self.rm.get_state()
        state.current.cpu_percent = 99
        self.assertEqual(self.rm.get_state().current.cpu_percent, 0)

    def test_concurrent_reservations_never_exceed_limits(self):
        granted = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                r = self.rm.try_reserve(ResourceUsage(cpu_percent=7))
                if r is not None:
                    with lock:
                        granted.append(r)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(granted), 14)
        self.assertLessEqual(self.rm.get_state().current.cpu_percent, 100)


if __name__ == "__main__":
    unittest.main()
