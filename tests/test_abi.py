import random

import pytest

from plugbind import abi
from plugbind.abi import (
    ASYNC_VALUE_SIZE, U32_MAX, AsyncRegistry, AsyncStatus, AsyncValue,
    LinearMemory, from_fat_ptr, to_fat_ptr,
)
from plugbind.errors import AsyncResolutionError, MemoryAccessError
from plugbind.types import TypeMap
from plugbind.wire import WireCodec

from conftest import ident

EDGE_VALUES = [0, 1, 2, 0x7FFF_FFFF, 0x8000_0000, U32_MAX - 1, U32_MAX]


def test_fat_ptr_layout():
    assert to_fat_ptr(1, 2) == (1 << 32) | 2
    assert from_fat_ptr(0xDEAD_BEEF_0000_0010) == (0xDEAD_BEEF, 0x10)


@pytest.mark.parametrize("ptr", EDGE_VALUES)
@pytest.mark.parametrize("length", EDGE_VALUES)
def test_fat_ptr_round_trip_edges(ptr, length):
    assert from_fat_ptr(to_fat_ptr(ptr, length)) == (ptr, length)


def test_fat_ptr_round_trip_random():
    rng = random.Random(20240611)
    for _ in range(2000):
        ptr, length = rng.randint(0, U32_MAX), rng.randint(0, U32_MAX)
        assert from_fat_ptr(to_fat_ptr(ptr, length)) == (ptr, length)


@pytest.mark.parametrize("ptr, length", [(-1, 0), (U32_MAX + 1, 0), (0, -1), (0, U32_MAX + 1)])
def test_fat_ptr_out_of_range(ptr, length):
    with pytest.raises(ValueError):
        to_fat_ptr(ptr, length)


@pytest.mark.parametrize("fat_ptr", [-1, 1 << 64])
def test_from_fat_ptr_out_of_range(fat_ptr):
    with pytest.raises(ValueError):
        from_fat_ptr(fat_ptr)


def test_symbols():
    assert abi.function_symbol("add") == "__fp_gen_add"
    assert abi.IMPORT_MODULE == "fp"
    assert ASYNC_VALUE_SIZE == 12


# --- linear memory ---


def test_malloc_never_returns_null():
    memory = LinearMemory()
    ptr, length = from_fat_ptr(memory.malloc(0))
    assert ptr != 0
    assert length == 0


def test_write_then_read():
    memory = LinearMemory()
    fat_ptr = memory.malloc(5)
    memory.write(fat_ptr, b"hello")
    assert memory.read(fat_ptr) == b"hello"


def test_write_past_buffer():
    memory = LinearMemory()
    fat_ptr = memory.malloc(2)
    with pytest.raises(MemoryAccessError):
        memory.write(fat_ptr, b"toolong")


def test_double_free():
    memory = LinearMemory()
    fat_ptr = memory.malloc(16)
    memory.free(fat_ptr)
    assert not memory.is_allocated(fat_ptr)
    with pytest.raises(MemoryAccessError):
        memory.free(fat_ptr)


def test_read_after_free():
    memory = LinearMemory()
    fat_ptr = memory.malloc(16)
    memory.free(fat_ptr)
    with pytest.raises(MemoryAccessError):
        memory.read(fat_ptr)


def test_freed_block_is_reused():
    memory = LinearMemory()
    first = memory.malloc(32)
    memory.free(first)
    second = memory.malloc(24)
    assert from_fat_ptr(second)[0] == from_fat_ptr(first)[0]


def test_memory_grows():
    memory = LinearMemory(size=65536)
    fat_ptr = memory.malloc(100_000)
    assert len(memory.data) >= from_fat_ptr(fat_ptr)[0] + 100_000
    assert len(memory.data) % 65536 == 0


# --- async values ---


def test_async_value_lifecycle():
    memory = LinearMemory()
    handle = AsyncValue.create(memory)
    assert handle.status == AsyncStatus.PENDING
    assert not handle.is_ready

    with pytest.raises(AsyncResolutionError, match="not ready"):
        handle.result()

    result = memory.malloc(3)
    memory.write(result, b"abc")
    handle.assign(result)
    assert handle.is_ready
    assert handle.result() == result

    assert handle.consume() == b"abc"
    assert not memory.is_allocated(result)
    assert not memory.is_allocated(handle.fat_ptr)


def test_async_value_record_layout():
    memory = LinearMemory()
    handle = AsyncValue.create(memory)
    handle.assign(to_fat_ptr(0x40, 7))
    assert memory.read_u32(handle.offset) == 1
    assert memory.read_u32(handle.offset + 4) == 0x40
    assert memory.read_u32(handle.offset + 8) == 7


def test_async_value_assigned_once():
    memory = LinearMemory()
    handle = AsyncValue.create(memory)
    handle.assign(memory.malloc(1))
    with pytest.raises(AsyncResolutionError, match="already assigned"):
        handle.assign(memory.malloc(1))


def test_async_value_consumed_once():
    memory = LinearMemory()
    handle = AsyncValue.create(memory)
    result = memory.malloc(1)
    memory.write(result, b"x")
    handle.assign(result)
    handle.consume()
    with pytest.raises(AsyncResolutionError, match="already consumed"):
        handle.consume()


def test_async_value_unexpected_status():
    memory = LinearMemory()
    handle = AsyncValue.create(memory)
    memory.write_u32(handle.offset, 7)
    with pytest.raises(AsyncResolutionError, match="Unexpected status: 7"):
        handle.result()


# --- registry ---


def test_registry_unknown_handle():
    registry = AsyncRegistry(LinearMemory())
    with pytest.raises(AsyncResolutionError, match="unknown promise"):
        registry.resolve(to_fat_ptr(8, 12))


def test_registry_pending_handle():
    memory = LinearMemory()
    registry = AsyncRegistry(memory)
    handle = AsyncValue.create(memory)
    registry.register(handle, lambda payload: None)

    with pytest.raises(AsyncResolutionError, match="not ready"):
        registry.resolve(handle.fat_ptr)
    assert handle.fat_ptr in registry


def test_registry_resolves_once():
    memory = LinearMemory()
    registry = AsyncRegistry(memory)
    handle = AsyncValue.create(memory)
    received = []
    registry.register(handle, received.append)

    result = memory.malloc(2)
    memory.write(result, b"ok")
    handle.assign(result)
    registry.resolve(handle.fat_ptr)

    assert received == [b"ok"]
    assert len(registry) == 0
    with pytest.raises(AsyncResolutionError, match="unknown promise"):
        registry.resolve(handle.fat_ptr)
    assert received == [b"ok"]


def test_registry_rejects_duplicate_registration():
    memory = LinearMemory()
    registry = AsyncRegistry(memory)
    handle = AsyncValue.create(memory)
    registry.register(handle, lambda payload: None)
    with pytest.raises(AsyncResolutionError):
        registry.register(handle, lambda payload: None)


def test_async_export_round_trip():
    """Host calls an async guest export returning Bytes and gets it once"""
    memory = LinearMemory()
    codec = WireCodec(TypeMap.from_types([]))
    registry = AsyncRegistry(memory)
    results = []

    # guest: hands back a zeroed handle straight away
    handle = AsyncValue.create(memory)
    # host: waits on it
    registry.register(handle, lambda payload: results.append(codec.decode(payload, ident("Bytes"))))
    assert results == []

    # guest: completes, writes the result and signals the host
    handle.assign(codec.export_value(memory, b"\x00payload", ident("Bytes")))
    registry.resolve(handle.fat_ptr)

    assert results == [b"\x00payload"]
    assert memory._live == {}
