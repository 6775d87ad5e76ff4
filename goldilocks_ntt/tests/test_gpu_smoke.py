"""
GPU smoke test for the CuPy backend.

Validates on a single device that:
1. CuPy sees a GPU and the engine selects it
2. Device transforms match the NumPy backend bit for bit
3. Pinned staging buffers and device-resident inputs work end to end

If no GPU is available, tests are skipped gracefully.
"""

import unittest
import random
import sys
import os

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from goldilocks_ntt.backend import HAS_CUPY, check_device_availability
from goldilocks_ntt.coset import (
    evaluate_poly, evaluate_poly_with_offset, interpolate_poly_with_offset,
    reverse_index_bits,
)
from goldilocks_ntt.device import DeviceContext
from goldilocks_ntt.field import reference as ref
from goldilocks_ntt.staging import StagingAllocator

P = ref.ORDER


@unittest.skipUnless(HAS_CUPY, "CuPy with a usable GPU not available")
class TestGpuSmoke(unittest.TestCase):
    """Smoke tests that require a CUDA or ROCm GPU."""

    @classmethod
    def setUpClass(cls):
        import cupy
        cls.cp = cupy
        cls.gpu = DeviceContext("cupy")
        cls.cpu = DeviceContext("numpy")
        cls.gpu_group = cls.gpu.init(1 << 14)
        cls.cpu_group = cls.cpu.init(1 << 14)

    @classmethod
    def tearDownClass(cls):
        cls.gpu.teardown()
        cls.cpu.teardown()

    def setUp(self):
        self.rng = random.Random(31337)

    def test_gpu_visible(self):
        info = check_device_availability()
        self.assertTrue(info["cupy_available"])
        self.assertGreater(info["device_count"], 0)
        self.assertEqual(self.gpu_group.backend, "cupy")

    def test_matches_numpy_backend(self):
        c = np.array([self.rng.randrange(P) for _ in range(1 << 12)],
                     dtype=np.uint64)
        h = self.rng.randrange(1, P)
        gpu = evaluate_poly_with_offset(c, 1 << 12, h, 4, None, 1 << 14,
                                        self.gpu_group)
        cpu = evaluate_poly_with_offset(c, 1 << 12, h, 4, None, 1 << 14,
                                        self.cpu_group)
        self.assertIsInstance(gpu, np.ndarray)
        self.assertTrue(np.array_equal(gpu, cpu))

    def test_round_trip_on_device(self):
        c = np.array([self.rng.randrange(P) for _ in range(1 << 10)],
                     dtype=np.uint64)
        evals = evaluate_poly_with_offset(c, 1 << 10, 7, 1, None, 1 << 10,
                                          self.gpu_group)
        back = interpolate_poly_with_offset(evals, None, 1 << 10, 7,
                                            self.gpu_group)
        self.assertTrue(np.array_equal(back, c))

    def test_pinned_staging(self):
        alloc = StagingAllocator()
        self.assertTrue(alloc.pinned)
        c = [self.rng.randrange(P) for _ in range(256)]
        with alloc.vector(256) as src, alloc.vector(256) as dst:
            src.fill_from(c)
            evaluate_poly(src, dst, 256, self.gpu_group)
            want = evaluate_poly(c, None, 256, self.cpu_group)
            self.assertEqual(dst.array.tolist(), want.tolist())

    def test_device_input_and_result(self):
        c = [self.rng.randrange(P) for _ in range(512)]
        dev_in = self.cp.asarray(np.array(c, dtype=np.uint64))
        dev_out = self.cp.zeros(512, dtype=self.cp.uint64)
        evaluate_poly(dev_in, dev_out, 512, self.gpu_group)
        want = evaluate_poly(c, None, 512, self.cpu_group)
        self.assertEqual(dev_out.get().tolist(), want.tolist())

    def test_bit_reverse_on_device(self):
        dev = self.cp.arange(16, dtype=self.cp.uint64)
        out = reverse_index_bits(dev, self.gpu_group)
        self.assertEqual(out.get().tolist(),
                         reverse_index_bits(np.arange(16, dtype=np.uint64)).tolist())


if __name__ == "__main__":
    unittest.main()
