"""Exception types raised by the generators, the loader and the ABI model"""


class PlugbindError(Exception):
    """Base class for all plugbind errors"""


class GenerationError(PlugbindError):
    """Fatal error while generating bindings; no partial output is written"""


class UnsupportedSchemaError(GenerationError):
    """The IR contains a shape the requested target cannot express"""

    def __init__(self, message: str, target: str = ""):
        self.target = target
        if target:
            message = f"[{target}] {message}"
        super().__init__(message)


class OutputError(GenerationError):
    """Output location could not be created, written or formatted"""


class LoaderError(PlugbindError):
    """Malformed IR document"""


class WireError(PlugbindError):
    """A value does not match the IR type it is encoded or decoded as"""


class AbiError(PlugbindError):
    """Violation of the guest/host ABI contract"""


class MemoryAccessError(AbiError):
    """Out-of-bounds access, double free or use after free"""


class AsyncResolutionError(AbiError):
    """Async value resolved while unknown, pending, or more than once"""

