"""
Tests for device lifecycle: parameter groups, teardown, work-buffer pool
and backend selection.
"""

import unittest
import random
import sys
import os
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
from unittest import mock

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from goldilocks_ntt import device
from goldilocks_ntt.backend import BACKEND_ENV, HAS_CUPY, resolve_backend
from goldilocks_ntt.coset import evaluate_poly, interpolate_poly
from goldilocks_ntt.device import DeviceContext, ParamGroup, GPU_init, teardown
from goldilocks_ntt.errors import (
    PreconditionError, ResourceExhaustedError, TeardownError,
)
from goldilocks_ntt.field import reference as ref
from goldilocks_ntt.reference import naive_evaluate

P = ref.ORDER


class TestInit(unittest.TestCase):

    def setUp(self):
        self.ctx = DeviceContext("numpy")

    def tearDown(self):
        self.ctx.teardown()

    def test_returns_group(self):
        group = self.ctx.init(256)
        self.assertIsInstance(group, ParamGroup)
        self.assertEqual(group.max_n, 256)
        self.assertTrue(group.alive)
        self.assertEqual(group.backend, "numpy")
        self.assertTrue(self.ctx.owns(group))

    def test_smaller_size_reuses_group(self):
        group = self.ctx.init(256)
        self.assertIs(self.ctx.init(64), group)
        self.assertIs(self.ctx.init(256), group)

    def test_larger_size_reinitialises(self):
        small = self.ctx.init(64)
        big = self.ctx.init(1024)
        self.assertIsNot(small, big)
        self.assertEqual(big.max_n, 1024)
        self.assertIs(self.ctx.current_group, big)
        self.assertNotEqual(small.group_id, big.group_id)

    def test_params_for_every_smaller_size(self):
        group = self.ctx.init(1 << 8)
        for log_n in range(0, 9):
            params = group.params(1 << log_n)
            self.assertEqual(params.n, 1 << log_n)
        self.assertIs(group.params(16), group.params(16))

    def test_rejects_bad_sizes(self):
        for bad in [0, 3, 100]:
            with self.assertRaises(PreconditionError):
                self.ctx.init(bad)

    def test_rejects_beyond_two_adicity(self):
        with self.assertRaises(PreconditionError):
            self.ctx.init(1 << 33)

    def test_group_rejects_larger_size(self):
        group = self.ctx.init(16)
        with self.assertRaises(PreconditionError):
            group.params(32)
        with self.assertRaises(PreconditionError):
            group.bit_reverse(32)

    def test_allocation_failure(self):
        with mock.patch("goldilocks_ntt.device.build_params",
                        side_effect=MemoryError("out of memory")):
            with self.assertRaises(ResourceExhaustedError):
                self.ctx.init(1024)
        self.assertIsNone(self.ctx.current_group)

    def test_work_storage_failure_surfaces_at_init(self):
        with mock.patch.object(DeviceContext, "_alloc_pair",
                               side_effect=MemoryError("out of memory")):
            with self.assertRaises(ResourceExhaustedError):
                self.ctx.init(1024)
        self.assertIsNone(self.ctx.current_group)
        self.assertEqual(self.ctx.pooled_buffer_count(), 0)


class TestTeardown(unittest.TestCase):

    def test_group_dead_after_teardown(self):
        ctx = DeviceContext("numpy")
        group = ctx.init(16)
        evaluate_poly([1] * 16, None, 16, group)
        ctx.teardown()
        self.assertFalse(group.alive)
        self.assertTrue(ctx.closed)
        with self.assertRaises(TeardownError):
            evaluate_poly([1] * 16, None, 16, group)
        with self.assertRaises(TeardownError):
            group.params(16)

    def test_teardown_error_is_precondition(self):
        self.assertTrue(issubclass(TeardownError, PreconditionError))

    def test_init_after_teardown(self):
        ctx = DeviceContext("numpy")
        ctx.teardown()
        with self.assertRaises(TeardownError):
            ctx.init(16)
        with self.assertRaises(TeardownError):
            with ctx.work_buffers((1, 16)):
                pass

    def test_context_manager(self):
        with DeviceContext("numpy") as ctx:
            group = ctx.init(8)
        self.assertFalse(group.alive)
        self.assertEqual(ctx.pooled_buffer_count(), 0)

    def test_teardown_releases_every_group(self):
        ctx = DeviceContext("numpy")
        small = ctx.init(8)
        big = ctx.init(64)
        ctx.teardown()
        self.assertFalse(small.alive)
        self.assertFalse(big.alive)


class TestWorkBuffers(unittest.TestCase):

    def setUp(self):
        self.ctx = DeviceContext("numpy")
        self.group = self.ctx.init(1 << 8)

    def tearDown(self):
        self.ctx.teardown()

    def test_init_reserves_max_size_pair(self):
        self.assertEqual(self.ctx.pooled_buffer_count(), 1)

    def test_single_vectors_reuse_reserved_pair(self):
        for n in [1 << 8, 64, 32, 1]:
            evaluate_poly([1] * n, None, n, self.group)
            interpolate_poly([1] * n, None, n, self.group)
        self.assertEqual(self.ctx.pooled_buffer_count(), 1)

    def test_reserved_views_have_requested_shape(self):
        with self.ctx.work_buffers((1, 16)) as (front, back):
            self.assertEqual(front.shape, (1, 16))
            self.assertEqual(back.shape, (1, 16))
            front[0, :] = 5
            self.assertEqual(front.reshape(1, 8, 2, 1)[0, 0, 0, 0], 5)
            self.assertFalse(np.shares_memory(front, back))

    def test_batch_pool_stays_bounded(self):
        for rows in range(1, 41):
            evaluate_poly(np.ones((rows, 16), dtype=np.uint64), None, 16,
                          self.group)
        self.assertLessEqual(self.ctx.pooled_buffer_count(),
                             1 + device.MAX_POOLED_PAIRS)

    def test_batch_pool_keeps_recent_shapes(self):
        for rows in range(2, 2 + device.MAX_POOLED_PAIRS + 3):
            with self.ctx.work_buffers((rows, 8)):
                pass
        newest = (1 + device.MAX_POOLED_PAIRS + 3, 8)
        with self.ctx.work_buffers(newest) as (front, _):
            held = front
        with self.ctx.work_buffers(newest) as (front, _):
            self.assertIs(front, held)

    def test_reinit_replaces_reserved_pair(self):
        bigger = self.ctx.init(1 << 9)
        self.assertEqual(self.ctx.pooled_buffer_count(), 1)
        evaluate_poly([1] * 512, None, 512, bigger)
        self.assertEqual(self.ctx.pooled_buffer_count(), 1)

    def test_nested_checkouts_are_distinct(self):
        with self.ctx.work_buffers((1, 8)) as (a0, a1):
            with self.ctx.work_buffers((1, 8)) as (b0, b1):
                self.assertFalse(np.shares_memory(a0, b0))
                self.assertFalse(np.shares_memory(a0, b1))
                self.assertFalse(np.shares_memory(a1, b0))
        self.assertEqual(self.ctx.pooled_buffer_count(), 2)

    def test_returned_on_exception(self):
        with self.assertRaises(KeyError):
            with self.ctx.work_buffers((2, 4)):
                raise KeyError("boom")
        self.assertEqual(self.ctx.pooled_buffer_count(), 2)

    def test_allocation_failure(self):
        def fail(shape, dtype=None):
            raise MemoryError("no room")

        with mock.patch.object(self.ctx, "xp", SimpleNamespace(empty=fail)):
            with self.assertRaises(ResourceExhaustedError):
                with self.ctx.work_buffers((2, 1 << 8)):
                    pass

    def test_concurrent_calls(self):
        rng = random.Random(5)
        inputs = [[rng.randrange(P) for _ in range(64)] for _ in range(16)]

        def run(c):
            return evaluate_poly(c, None, 64, self.group).tolist()

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(run, inputs))
        for c, got in zip(inputs, results):
            self.assertEqual(got, naive_evaluate(c))


class TestModuleEntryPoints(unittest.TestCase):

    def tearDown(self):
        teardown()

    def test_gpu_init_and_teardown(self):
        group = GPU_init(32)
        self.assertEqual(group.max_n, 32)
        self.assertIs(GPU_init(16, group), group)
        self.assertIs(device.default_context(), group.context)
        bigger = GPU_init(128, group)
        self.assertEqual(bigger.max_n, 128)
        self.assertIs(bigger.context, group.context)
        teardown()
        self.assertFalse(group.alive)
        self.assertFalse(bigger.alive)

    def test_gpu_init_after_teardown_creates_fresh_context(self):
        group = GPU_init(8)
        teardown()
        fresh = GPU_init(8, group)
        self.assertTrue(fresh.alive)
        self.assertIsNot(fresh.context, group.context)

    def test_gpu_init_rejects_bad_size(self):
        with self.assertRaises(PreconditionError):
            GPU_init(12)
        group = GPU_init(16)
        with self.assertRaises(PreconditionError):
            GPU_init(6, group)

    def test_teardown_without_init(self):
        teardown()
        teardown()


class TestBackendSelection(unittest.TestCase):

    def test_explicit_numpy(self):
        self.assertEqual(resolve_backend("numpy"), "numpy")

    def test_unknown_backend(self):
        with self.assertRaises(PreconditionError):
            resolve_backend("opencl")

    def test_env_override(self):
        with mock.patch.dict(os.environ, {BACKEND_ENV: "numpy"}):
            self.assertEqual(resolve_backend("auto"), "numpy")
            self.assertEqual(DeviceContext().backend, "numpy")
        with mock.patch.dict(os.environ, {BACKEND_ENV: "bogus"}):
            with self.assertRaises(PreconditionError):
                resolve_backend()

    def test_auto_default(self):
        with mock.patch.dict(os.environ, {BACKEND_ENV: ""}):
            self.assertEqual(resolve_backend(), "cupy" if HAS_CUPY else "numpy")

    @unittest.skipIf(HAS_CUPY, "CuPy is available")
    def test_cupy_unavailable(self):
        with self.assertRaises(PreconditionError):
            resolve_backend("cupy")


if __name__ == "__main__":
    unittest.main()
