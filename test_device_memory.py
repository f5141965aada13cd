import numpy as np
import pytest
import torch

import device_memory
from device_memory import DeviceBuffers
from errors import AllocationError, TransferError


def test_context_manager_allocates_and_releases():
    with DeviceBuffers(16, "cpu") as bufs:
        for t in (bufs.a, bufs.b, bufs.y):
            assert t.shape == (16,)
            assert t.dtype == torch.float32
            assert t.device.type == "cpu"
    assert bufs.released
    assert bufs.a is None and bufs.b is None and bufs.y is None


def test_release_on_exception():
    with pytest.raises(KeyError):
        with DeviceBuffers(16, "cpu") as bufs:
            raise KeyError("boom")
    assert bufs.released


def test_double_release_is_rejected():
    bufs = DeviceBuffers(4, "cpu")
    bufs.allocate()
    bufs.release()
    with pytest.raises(RuntimeError, match="twice"):
        bufs.release()


def test_use_after_release_is_rejected():
    bufs = DeviceBuffers(4, "cpu")
    bufs.allocate()
    bufs.release()
    with pytest.raises(RuntimeError):
        bufs.download()


def test_upload_then_download_round_trips_y():
    a = np.arange(8, dtype=np.float32)
    b = np.ones(8, dtype=np.float32)
    with DeviceBuffers(8, "cpu") as bufs:
        bufs.upload(a, b)
        bufs.y.copy_(bufs.a + bufs.b)
        host_y = bufs.download()
    np.testing.assert_array_equal(host_y, a + b)
    assert host_y.dtype == np.float32


def test_download_is_independent_of_device_buffer():
    with DeviceBuffers(4, "cpu") as bufs:
        bufs.upload(np.zeros(4, dtype=np.float32), np.zeros(4, dtype=np.float32))
        bufs.y.zero_()
        host_y = bufs.download()
        bufs.y.fill_(7.0)
    assert np.all(host_y == 0.0)


def test_upload_length_mismatch():
    with DeviceBuffers(8, "cpu") as bufs:
        with pytest.raises(ValueError, match="shape"):
            bufs.upload(np.zeros(7, dtype=np.float32), np.zeros(8, dtype=np.float32))


def test_upload_fault_is_transfer_error(monkeypatch):
    with DeviceBuffers(8, "cpu") as bufs:
        def broken_copy(*args, **kwargs):
            raise RuntimeError("copy fault")

        monkeypatch.setattr(bufs, "a", _BrokenTensor(broken_copy))
        with pytest.raises(TransferError, match="copy fault"):
            bufs.upload(np.zeros(8, dtype=np.float32), np.zeros(8, dtype=np.float32))


def test_partial_allocation_fault_releases_once(monkeypatch):
    calls = {"empty": 0, "release": 0}
    real_empty = torch.empty
    real_release = DeviceBuffers.release

    def flaky_empty(*args, **kwargs):
        calls["empty"] += 1
        if calls["empty"] == 2:
            raise RuntimeError("out of memory")
        return real_empty(*args, **kwargs)

    def counting_release(self):
        calls["release"] += 1
        real_release(self)

    monkeypatch.setattr(device_memory.torch, "empty", flaky_empty)
    monkeypatch.setattr(DeviceBuffers, "release", counting_release)

    with pytest.raises(AllocationError) as info:
        with DeviceBuffers(8, "cpu"):
            pytest.fail("body must not run after a failed allocation")
    assert info.value.op == "allocate"
    assert calls["release"] == 1


@pytest.mark.skipif(torch.cuda.is_available(), reason="needs a machine without CUDA")
def test_cuda_unavailable_is_allocation_error():
    bufs = DeviceBuffers(8, "cuda")
    with pytest.raises(AllocationError, match="No CUDA device"):
        bufs.allocate()
    assert bufs.released


@pytest.mark.parametrize("n", [0, -1])
def test_rejects_non_positive_size(n):
    with pytest.raises(ValueError):
        DeviceBuffers(n, "cpu")


class _BrokenTensor:
    def __init__(self, copy_):
        self.copy_ = copy_
