"""Guest/host ABI contract.

Symbol names and layouts that every generated target must agree on, plus a
Python model of the guest's linear memory and of the async-value protocol.
The generators take their constants from here; the model is what the
contract is checked against.
"""

import logging
import struct
from enum import IntEnum
from typing import Callable

from .errors import AsyncResolutionError, MemoryAccessError

logger = logging.getLogger(__name__)

IMPORT_MODULE = "fp"
FUNCTION_PREFIX = "__fp_gen_"
MALLOC_SYMBOL = "__fp_malloc"
FREE_SYMBOL = "__fp_free"
GUEST_RESOLVE_SYMBOL = "__fp_guest_resolve_async_value"
HOST_RESOLVE_SYMBOL = "__fp_host_resolve_async_value"
MEMORY_SYMBOL = "memory"

U32_MAX = 0xFFFF_FFFF

# status, ptr, len
ASYNC_VALUE_FORMAT = "<III"
ASYNC_VALUE_SIZE = struct.calcsize(ASYNC_VALUE_FORMAT)


def function_symbol(name: str) -> str:
    """Symbol under which a declared function crosses the boundary"""
    return f"{FUNCTION_PREFIX}{name}"


def to_fat_ptr(ptr: int, length: int) -> int:
    """Pack a 32-bit offset (high bits) and 32-bit length (low bits)"""
    if not 0 <= ptr <= U32_MAX:
        raise ValueError(f"Pointer out of 32-bit range: {ptr}")
    if not 0 <= length <= U32_MAX:
        raise ValueError(f"Length out of 32-bit range: {length}")
    return (ptr << 32) | length


def from_fat_ptr(fat_ptr: int) -> tuple[int, int]:
    """Unpack a FatPtr into ``(ptr, len)``"""
    if not 0 <= fat_ptr <= 0xFFFF_FFFF_FFFF_FFFF:
        raise ValueError(f"FatPtr out of 64-bit range: {fat_ptr}")
    return fat_ptr >> 32, fat_ptr & U32_MAX


class AsyncStatus(IntEnum):
    PENDING = 0
    READY = 1


class LinearMemory:
    """Guest linear memory with the allocate/free pair the guest exports.

    Allocation is first-fit over freed blocks, then bump. Offset 0 is never
    handed out so a zero pointer stays recognisable as null.
    """

    def __init__(self, size: int = 64 * 1024, align: int = 8):
        self.data = bytearray(size)
        self.align = align
        self._next = align
        self._live: dict[int, int] = {}
        self._free: list[tuple[int, int]] = []

    def malloc(self, length: int) -> int:
        """Allocate ``length`` bytes and return a FatPtr to them"""
        size = max(self._round(length), self.align)
        for i, (ptr, block) in enumerate(self._free):
            if block >= size:
                del self._free[i]
                break
        else:
            ptr = self._next
            if ptr + size > len(self.data):
                self.grow(ptr + size - len(self.data))
            self._next = ptr + size
            block = size
        self._live[ptr] = block
        logger.debug("malloc(%d) -> %#x", length, ptr)
        return to_fat_ptr(ptr, length)

    def free(self, fat_ptr: int):
        ptr, _ = from_fat_ptr(fat_ptr)
        block = self._live.pop(ptr, None)
        if block is None:
            raise MemoryAccessError(f"Free of unallocated pointer {ptr:#x}")
        self._free.append((ptr, block))
        logger.debug("free(%#x)", ptr)

    def grow(self, extra: int):
        pages = -(-extra // 65536)
        self.data.extend(bytes(pages * 65536))

    def is_allocated(self, fat_ptr: int) -> bool:
        ptr, _ = from_fat_ptr(fat_ptr)
        return ptr in self._live

    def read(self, fat_ptr: int) -> bytes:
        ptr, length = from_fat_ptr(fat_ptr)
        self._check(ptr, length)
        return bytes(self.data[ptr:ptr + length])

    def write(self, fat_ptr: int, payload: bytes):
        ptr, length = from_fat_ptr(fat_ptr)
        if len(payload) > length:
            raise MemoryAccessError(f"Write of {len(payload)} bytes into {length}-byte buffer")
        self._check(ptr, len(payload))
        self.data[ptr:ptr + len(payload)] = payload

    def read_u32(self, offset: int) -> int:
        return struct.unpack_from("<I", self.data, offset)[0]

    def write_u32(self, offset: int, value: int):
        struct.pack_into("<I", self.data, offset, value)

    def _check(self, ptr: int, length: int):
        for start, block in self._live.items():
            if start <= ptr and ptr + length <= start + block:
                return
        raise MemoryAccessError(f"Access of {length} bytes at {ptr:#x} outside live allocations")

    def _round(self, length: int) -> int:
        return (length + self.align - 1) // self.align * self.align


class AsyncValue:
    """Handle to a 12-byte async-value record in linear memory.

    Pending (status 0) -> Ready (ptr/len written, status 1) -> Consumed.
    """

    def __init__(self, memory: LinearMemory, fat_ptr: int):
        self.memory = memory
        self.fat_ptr = fat_ptr
        self.consumed = False

    @classmethod
    def create(cls, memory: LinearMemory) -> "AsyncValue":
        """Allocate a zeroed record, as the caller does before the call"""
        fat_ptr = memory.malloc(ASYNC_VALUE_SIZE)
        memory.write(fat_ptr, bytes(ASYNC_VALUE_SIZE))
        return cls(memory, fat_ptr)

    @property
    def offset(self) -> int:
        return from_fat_ptr(self.fat_ptr)[0]

    @property
    def status(self) -> int:
        return self.memory.read_u32(self.offset)

    @property
    def is_ready(self) -> bool:
        return self.status == AsyncStatus.READY

    def assign(self, result_fat_ptr: int):
        """Record the result location, then flip the status to ready"""
        if self.status != AsyncStatus.PENDING:
            raise AsyncResolutionError(f"Async value {self.fat_ptr:#x} was already assigned")
        result_ptr, result_len = from_fat_ptr(result_fat_ptr)
        self.memory.write_u32(self.offset + 4, result_ptr)
        self.memory.write_u32(self.offset + 8, result_len)
        self.memory.write_u32(self.offset, AsyncStatus.READY)

    def result(self) -> int:
        """FatPtr of the result buffer; only valid once ready"""
        if self.consumed:
            raise AsyncResolutionError(f"Async value {self.fat_ptr:#x} was already consumed")
        status = self.status
        if status == AsyncStatus.PENDING:
            raise AsyncResolutionError("Tried to read async value that is not ready")
        if status != AsyncStatus.READY:
            raise AsyncResolutionError(f"Unexpected status: {status}")
        ptr, length = struct.unpack_from("<II", self.memory.data, self.offset + 4)
        return to_fat_ptr(ptr, length)

    def consume(self) -> bytes:
        """Read the result bytes and release both buffers"""
        result_ptr = self.result()
        payload = self.memory.read(result_ptr)
        self.memory.free(result_ptr)
        self.memory.free(self.fat_ptr)
        self.consumed = True
        return payload


class AsyncRegistry:
    """Pending async calls keyed by handle, each fulfilled exactly once.

    Mirrors the promise map the dynamic host keeps behind
    ``__fp_host_resolve_async_value``.
    """

    def __init__(self, memory: LinearMemory):
        self.memory = memory
        self._pending: dict[int, tuple[AsyncValue, Callable[[bytes], None]]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, fat_ptr: int) -> bool:
        return fat_ptr in self._pending

    def register(self, handle: AsyncValue, on_ready: Callable[[bytes], None]):
        if handle.fat_ptr in self._pending:
            raise AsyncResolutionError(f"Async value {handle.fat_ptr:#x} is already registered")
        self._pending[handle.fat_ptr] = (handle, on_ready)

    def resolve(self, fat_ptr: int):
        entry = self._pending.get(fat_ptr)
        if entry is None:
            raise AsyncResolutionError("Tried to resolve unknown promise")
        handle, on_ready = entry
        if not handle.is_ready:
            raise AsyncResolutionError("Tried to resolve promise that is not ready")
        del self._pending[fat_ptr]
        on_ready(handle.consume())

